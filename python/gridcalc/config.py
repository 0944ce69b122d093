"""Configuration for gridcalc.

Settings are loaded with pydantic-settings. Every option can be set through an
environment variable with the ``GRIDCALC_`` prefix or through a ``.env`` file.

Environment Variables:
    GRIDCALC_MAX_DEPTH: Maximum nested formula-cell evaluations (default: 100)
    GRIDCALC_MAX_CACHE_SIZE: Result cache capacity (default: 1000)
    GRIDCALC_CACHE_EVICT_FRACTION: Share of entries evicted when full (default: 0.3)
    GRIDCALC_MAX_RANGE_CELLS: Largest range a format edit may touch (default: 1000000)
    GRIDCALC_ROW_HEIGHT: Default row height in pixels (default: 20)
    GRIDCALC_COL_WIDTH: Default column width in pixels (default: 64)
    GRIDCALC_HEADER_HEIGHT: Column header height in pixels (default: 20)
    GRIDCALC_ROW_HEADER_WIDTH: Row header width in pixels (default: 42)
    GRIDCALC_OVERSCAN: Extra rows/columns rendered around the viewport (default: 5)
    GRIDCALC_MIN_ROWS: Minimum virtual row count (default: 200)
    GRIDCALC_MIN_COLS: Minimum virtual column count (default: 50)
    GRIDCALC_CELL_POOL_SIZE: Recycled cell elements kept (default: 100)
    GRIDCALC_HEADER_POOL_SIZE: Recycled header elements kept per axis (default: 50)
    GRIDCALC_FRAME_INTERVAL_MS: Scroll coalescing frame interval (default: 16)
    GRIDCALC_DEFAULT_SHEET_NAME: Name of the first sheet (default: Sheet1)
    GRIDCALC_SEED_HEADER: JSON list seeding row 1 of a new workbook
    GRIDCALC_WORKBOOK_ID: Persistence key of the current workbook (default: current)
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine and view settings loaded from environment variables.

    Example .env file:
        GRIDCALC_MAX_DEPTH=50
        GRIDCALC_OVERSCAN=10
    """

    model_config = SettingsConfigDict(
        env_prefix="GRIDCALC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # =========================================================================
    # Formula engine
    # =========================================================================

    max_depth: int = 100
    """Nested formula-cell evaluations allowed before ``#DEPTH!``."""

    max_cache_size: int = 1000
    """Capacity of the top-level result cache."""

    cache_evict_fraction: float = 0.3
    """Share of the oldest cache entries dropped in one pass when full."""

    # =========================================================================
    # Mutations
    # =========================================================================

    max_range_cells: int = 1_000_000
    """Largest number of cells a single range format edit may create."""

    # =========================================================================
    # Virtual grid
    # =========================================================================

    row_height: float = 20
    col_width: float = 64
    header_height: float = 20
    row_header_width: float = 42
    overscan: int = 5
    min_rows: int = 200
    min_cols: int = 50
    cell_pool_size: int = 100
    header_pool_size: int = 50
    frame_interval_ms: float = 16

    # =========================================================================
    # Workbook lifecycle
    # =========================================================================

    default_sheet_name: str = "Sheet1"
    seed_header: list[str] = ["Name", "Age", "Email"]
    workbook_id: str = "current"

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("max_depth")
    @classmethod
    def validate_max_depth(cls, v: int) -> int:
        """Keep recursion well inside the interpreter's own stack limit."""
        if not 1 <= v <= 200:
            raise ValueError(f"max_depth must be between 1 and 200, got {v}")
        return v

    @field_validator("max_cache_size", "cell_pool_size", "header_pool_size", "max_range_cells")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be at least 1, got {v}")
        return v

    @field_validator("cache_evict_fraction")
    @classmethod
    def validate_fraction(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError(f"cache_evict_fraction must be in (0, 1], got {v}")
        return v

    @field_validator("row_height", "col_width", "header_height", "row_header_width", "frame_interval_ms")
    @classmethod
    def validate_size(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"sizes must be positive, got {v}")
        return v

    @field_validator("overscan", "min_rows", "min_cols")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"value must not be negative, got {v}")
        return v

    @field_validator("default_sheet_name")
    @classmethod
    def validate_sheet_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("default_sheet_name must be a non-empty string")
        return v.strip()

    @model_validator(mode="after")
    def validate_grid_minimum(self) -> Settings:
        """The minimum virtual size has to fit in the grid address space."""
        from gridcalc._utils import MAX_COLS, MAX_ROWS

        if self.min_rows > MAX_ROWS or self.min_cols > MAX_COLS:
            raise ValueError(
                f"min_rows/min_cols ({self.min_rows}x{self.min_cols}) exceed "
                f"the grid limit {MAX_ROWS}x{MAX_COLS}"
            )
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    return Settings()
