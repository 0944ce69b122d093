"""Tests for gridcalc.config settings loading."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from pydantic import ValidationError

from gridcalc.calc import FormulaEngine
from gridcalc.config import Settings, get_settings


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestDefaults:
    def test_values(self) -> None:
        settings = Settings()
        assert settings.max_depth == 100
        assert settings.max_cache_size == 1000
        assert settings.cache_evict_fraction == 0.3
        assert settings.overscan == 5
        assert (settings.min_rows, settings.min_cols) == (200, 50)
        assert (settings.cell_pool_size, settings.header_pool_size) == (100, 50)
        assert settings.seed_header == ["Name", "Age", "Email"]
        assert settings.workbook_id == "current"

    def test_get_settings_is_cached(self) -> None:
        assert get_settings() is get_settings()


class TestEnvironment:
    def test_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GRIDCALC_MAX_DEPTH", "12")
        monkeypatch.setenv("GRIDCALC_OVERSCAN", "0")
        settings = Settings()
        assert settings.max_depth == 12
        assert settings.overscan == 0

    def test_seed_header_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GRIDCALC_SEED_HEADER", '["Item", "Qty"]')
        assert Settings().seed_header == ["Item", "Qty"]

    def test_engine_picks_up_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GRIDCALC_MAX_DEPTH", "7")
        assert FormulaEngine().max_depth == 7

    def test_unprefixed_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAX_DEPTH", "3")
        assert Settings().max_depth == 100


class TestValidation:
    @pytest.mark.parametrize("depth", [0, 201])
    def test_max_depth_bounds(self, depth: int) -> None:
        with pytest.raises(ValidationError, match="max_depth"):
            Settings(max_depth=depth)

    def test_evict_fraction(self) -> None:
        with pytest.raises(ValidationError):
            Settings(cache_evict_fraction=0)
        assert Settings(cache_evict_fraction=1.0).cache_evict_fraction == 1.0

    def test_sizes_positive(self) -> None:
        with pytest.raises(ValidationError):
            Settings(row_height=0)

    def test_negative_overscan(self) -> None:
        with pytest.raises(ValidationError):
            Settings(overscan=-1)

    def test_sheet_name_stripped(self) -> None:
        assert Settings(default_sheet_name="  Main ").default_sheet_name == "Main"
        with pytest.raises(ValidationError):
            Settings(default_sheet_name="  ")

    def test_grid_minimum(self) -> None:
        with pytest.raises(ValidationError):
            Settings(min_cols=20_000)
