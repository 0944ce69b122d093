"""Recyclable render elements and the bounded pools that hold them."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar


@dataclass
class CellElement:
    """One materialized grid cell: position on the canvas plus display state."""

    row: int = -1
    col: int = -1
    label: str = ""
    text: str = ""
    left: float = 0.0
    top: float = 0.0
    width: float = 0.0
    height: float = 0.0
    has_formula: bool = False
    is_error: bool = False
    number_format: str | None = None
    bold: bool = False
    italic: bool = False
    underline: bool = False
    color: str | None = None

    def reset(self) -> None:
        self.row = self.col = -1
        self.label = self.text = ""
        self.has_formula = self.is_error = False
        self.number_format = None
        self.bold = self.italic = self.underline = False
        self.color = None


@dataclass
class HeaderElement:
    """A row header (``"1"``, ``"2"``...) or column header (``"A"``, ``"B"``...)."""

    index: int = -1
    text: str = ""
    offset: float = 0.0
    size: float = 0.0

    def reset(self) -> None:
        self.index = -1
        self.text = ""


class _Resettable(Protocol):
    def reset(self) -> None: ...


T = TypeVar("T", bound=_Resettable)


class ElementPool(Generic[T]):
    """Free-list of released elements, capped at *capacity*.

    Releasing into a full pool drops the element; acquiring from an empty
    pool allocates a new one.
    """

    def __init__(self, factory: Callable[[], T], capacity: int) -> None:
        if capacity < 0:
            raise ValueError(f"Pool capacity must be non-negative, got {capacity}")
        self._factory = factory
        self.capacity = capacity
        self._free: list[T] = []
        self.allocated = 0
        self.reused = 0
        self.dropped = 0

    def acquire(self) -> T:
        if self._free:
            self.reused += 1
            return self._free.pop()
        self.allocated += 1
        return self._factory()

    def release(self, element: T) -> bool:
        """Reset and keep *element* for reuse; False when the pool was full."""
        element.reset()
        if len(self._free) >= self.capacity:
            self.dropped += 1
            return False
        self._free.append(element)
        return True

    def __len__(self) -> int:
        return len(self._free)
