"""Snapshot persistence: async stores and the commit-driven persister.

The in-memory workbook is authoritative. After each commit a JSON snapshot
is handed to a :class:`WorkbookStore` in the background; a failed save is
logged and reported through the notification callback, never rolled back
into the model.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import ValidationError

from gridcalc._workbook import Workbook
from gridcalc.config import Settings, get_settings
from gridcalc.exceptions import PersistenceError

if TYPE_CHECKING:
    from gridcalc._coordinator import CommitEvent, MutationCoordinator

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str], None]  # (message, level) -> None

_WORKBOOK_ID_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


@runtime_checkable
class WorkbookStore(Protocol):
    """Async key-value storage for workbook snapshots (JSON text)."""

    async def save_workbook(self, workbook_id: str, data: str) -> None:
        ...

    async def load_workbook(self, workbook_id: str) -> str | None:
        """Stored snapshot, or None when nothing was saved under *workbook_id*."""
        ...


class InMemoryWorkbookStore:
    """Dict-backed store for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.saves = 0

    async def save_workbook(self, workbook_id: str, data: str) -> None:
        self.data[workbook_id] = data
        self.saves += 1

    async def load_workbook(self, workbook_id: str) -> str | None:
        return self.data.get(workbook_id)


class JsonFileWorkbookStore:
    """One ``<workbook_id>.json`` file per workbook under *directory*.

    Blocking file I/O runs in a worker thread via ``asyncio.to_thread``.
    Writes go to a temporary file that replaces the target, so a crash never
    leaves a half-written snapshot.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, workbook_id: str) -> Path:
        if not _WORKBOOK_ID_RE.match(workbook_id):
            raise PersistenceError(
                f"Invalid workbook id {workbook_id!r}", workbook_id=workbook_id
            )
        return self.directory / f"{workbook_id}.json"

    async def save_workbook(self, workbook_id: str, data: str) -> None:
        path = self._path(workbook_id)

        def _write() -> None:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(data, encoding="utf-8")
            os.replace(tmp, path)

        await asyncio.to_thread(_write)

    async def load_workbook(self, workbook_id: str) -> str | None:
        path = self._path(workbook_id)

        def _read() -> str | None:
            if not path.exists():
                return None
            return path.read_text(encoding="utf-8")

        return await asyncio.to_thread(_read)


def decode_snapshot(data: str, workbook_id: str) -> Workbook:
    try:
        return Workbook.from_snapshot(data)
    except (ValidationError, ValueError) as exc:
        raise PersistenceError(
            f"Stored snapshot for {workbook_id!r} is invalid: {exc}", workbook_id=workbook_id
        ) from exc


class SnapshotPersister:
    """Saves a snapshot to *store* after every coordinator commit.

    Inside a running event loop the save is a fire-and-forget task (awaitable
    through :meth:`flush`); without one it runs to completion immediately.

    Usage::

        persister = SnapshotPersister(coord, JsonFileWorkbookStore("data"), notify=toast)
        coord.set_cell("A2", "Alice")   # snapshot saved in the background
        await persister.flush()
    """

    def __init__(
        self,
        coordinator: MutationCoordinator,
        store: WorkbookStore,
        workbook_id: str | None = None,
        notify: Notifier | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._store = store
        self.workbook_id = workbook_id or (settings or get_settings()).workbook_id
        self._notify = notify
        self._tasks: set[asyncio.Task[None]] = set()
        self.last_saved_version: int | None = None
        self.failures = 0
        self._unsubscribe: Callable[[], None] | None = coordinator.subscribe(self._on_commit)

    def close(self) -> None:
        """Stop listening for commits."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_commit(self, event: CommitEvent) -> None:
        # Serialize now so later edits cannot leak into this snapshot
        data = self._coordinator.workbook.to_snapshot().model_dump_json()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is None:
            asyncio.run(self._save(data, event.version))
            return
        task = loop.create_task(self._save(data, event.version))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _save(self, data: str, version: int) -> None:
        try:
            await self._store.save_workbook(self.workbook_id, data)
        except Exception as exc:
            self.failures += 1
            logger.warning(
                "Failed to persist workbook %r at version %d: %s", self.workbook_id, version, exc
            )
            if self._notify is not None:
                self._notify(f"Could not save workbook: {exc}", "error")
            return
        if self.last_saved_version is None or version > self.last_saved_version:
            self.last_saved_version = version
        logger.debug("Persisted workbook %r at version %d", self.workbook_id, version)

    async def flush(self) -> None:
        """Wait for every scheduled save to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def save_now(self) -> None:
        """Save the current state immediately, regardless of commits."""
        data = self._coordinator.workbook.to_snapshot().model_dump_json()
        await self._save(data, self._coordinator.version)

    async def load(self) -> Workbook | None:
        data = await self._store.load_workbook(self.workbook_id)
        if data is None:
            return None
        return decode_snapshot(data, self.workbook_id)


async def load_or_create(
    store: WorkbookStore,
    workbook_id: str | None = None,
    settings: Settings | None = None,
) -> Workbook:
    """Restore the saved workbook, or build the seeded default on a cold start."""
    settings = settings or get_settings()
    workbook_id = workbook_id or settings.workbook_id
    data = await store.load_workbook(workbook_id)
    if data is None:
        logger.info("No saved workbook %r; starting with a default workbook", workbook_id)
        return Workbook.create_default(settings)
    return decode_snapshot(data, workbook_id)
