"""Tests for axis metrics, window computation, element pools, and frame schedulers."""

from __future__ import annotations

import asyncio

import pytest

from gridcalc.view import (
    AsyncioFrameScheduler,
    AxisMetrics,
    CellElement,
    ElementPool,
    FrameScheduler,
    HeaderElement,
    ManualFrameScheduler,
    VisibleRange,
    compute_window,
)

# ---------------------------------------------------------------------------
# AxisMetrics
# ---------------------------------------------------------------------------


class TestAxisMetrics:
    def test_uniform(self) -> None:
        axis = AxisMetrics(200, 20)
        assert axis.total == 4000
        assert axis.offset_of(10) == 200
        assert axis.index_at(199.9) == 9
        assert axis.index_at(200) == 10

    def test_overrides(self) -> None:
        axis = AxisMetrics(10, 20, {2: 50, 5: 10})
        assert axis.size_of(2) == 50
        assert axis.size_of(3) == 20
        assert axis.offset_of(3) == 90
        assert axis.offset_of(6) == 140
        assert axis.total == 220
        assert axis.index_at(89) == 2
        assert axis.index_at(90) == 3

    def test_out_of_range_overrides_ignored(self) -> None:
        axis = AxisMetrics(3, 10, {7: 100, -1: 100})
        assert axis.total == 30

    def test_index_at_clamps(self) -> None:
        axis = AxisMetrics(5, 10)
        assert axis.index_at(-50) == 0
        assert axis.index_at(10_000) == 4

    def test_end_index(self) -> None:
        axis = AxisMetrics(10, 20)
        assert axis.end_index(0) == 0
        assert axis.end_index(40) == 2
        assert axis.end_index(41) == 3
        assert axis.end_index(1_000) == 10

    def test_empty_axis(self) -> None:
        axis = AxisMetrics(0, 20)
        assert axis.total == 0
        assert axis.index_at(100) == 0

    def test_validation(self) -> None:
        with pytest.raises(ValueError):
            AxisMetrics(-1, 20)
        with pytest.raises(ValueError):
            AxisMetrics(10, 0)

    def test_million_rows(self) -> None:
        axis = AxisMetrics(1_048_576, 20, {500_000: 100})
        assert axis.total == 1_048_576 * 20 + 80
        assert axis.index_at(axis.offset_of(600_000)) == 600_000


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------


class TestComputeWindow:
    def test_at_origin(self) -> None:
        window = compute_window(AxisMetrics(200, 20), AxisMetrics(50, 64), 0, 0, 400, 640, 5)
        assert window == VisibleRange(0, 25, 0, 15)

    def test_at_max_scroll(self) -> None:
        rows, cols = AxisMetrics(200, 20), AxisMetrics(50, 64)
        window = compute_window(rows, cols, 3600, 0, 400, 640, 5)
        assert window == VisibleRange(175, 200, 0, 15)
        assert window.size == 375

    def test_middle(self) -> None:
        window = compute_window(AxisMetrics(1000, 20), AxisMetrics(50, 64), 1010, 128, 400, 640, 2)
        # rows 50..70 and columns 2..11 intersect the viewport
        assert window == VisibleRange(48, 73, 0, 14)

    def test_no_overscan(self) -> None:
        window = compute_window(AxisMetrics(100, 20), AxisMetrics(10, 64), 0, 0, 100, 128, 0)
        assert window == VisibleRange(0, 5, 0, 2)

    def test_empty_viewport(self) -> None:
        window = compute_window(AxisMetrics(100, 20), AxisMetrics(10, 64), 0, 0, 0, 0, 0)
        assert window.size == 0
        assert window.to_cell_range() is None


class TestVisibleRange:
    def test_contains_is_half_open(self) -> None:
        window = VisibleRange(0, 2, 0, 2)
        assert window.contains(1, 1)
        assert not window.contains(2, 0)

    def test_to_cell_range(self) -> None:
        assert str(VisibleRange(1, 3, 0, 2).to_cell_range()) == "A2:B3"


# ---------------------------------------------------------------------------
# Pools
# ---------------------------------------------------------------------------


class TestElementPool:
    def test_reuse(self) -> None:
        pool = ElementPool(CellElement, capacity=2)
        first = pool.acquire()
        first.text = "hello"
        assert pool.release(first)
        again = pool.acquire()
        assert again is first
        assert again.text == ""
        assert (pool.allocated, pool.reused) == (1, 1)

    def test_capacity_cap(self) -> None:
        pool = ElementPool(HeaderElement, capacity=1)
        a, b = pool.acquire(), pool.acquire()
        assert pool.release(a)
        assert not pool.release(b)
        assert len(pool) == 1
        assert pool.dropped == 1

    def test_negative_capacity(self) -> None:
        with pytest.raises(ValueError):
            ElementPool(CellElement, capacity=-1)


# ---------------------------------------------------------------------------
# Schedulers
# ---------------------------------------------------------------------------


class TestManualFrameScheduler:
    def test_coalesces_to_latest(self) -> None:
        scheduler = ManualFrameScheduler()
        calls: list[str] = []
        scheduler.request(lambda: calls.append("first"))
        scheduler.request(lambda: calls.append("second"))
        assert scheduler.pending
        assert scheduler.pump()
        assert calls == ["second"]
        assert not scheduler.pump()
        assert (scheduler.requests, scheduler.frames) == (2, 1)

    def test_cancel(self) -> None:
        scheduler = ManualFrameScheduler()
        scheduler.request(lambda: None)
        scheduler.cancel()
        assert not scheduler.pending

    def test_pump_all_follows_chained_requests(self) -> None:
        scheduler = ManualFrameScheduler()
        remaining = [3]

        def frame() -> None:
            remaining[0] -= 1
            if remaining[0]:
                scheduler.request(frame)

        scheduler.request(frame)
        assert scheduler.pump_all() == 3

    def test_protocol(self) -> None:
        assert isinstance(ManualFrameScheduler(), FrameScheduler)
        assert isinstance(AsyncioFrameScheduler(), FrameScheduler)


class TestAsyncioFrameScheduler:
    def test_one_frame_per_burst(self) -> None:
        calls: list[int] = []

        async def run() -> None:
            scheduler = AsyncioFrameScheduler(interval_ms=1)
            for i in range(5):
                scheduler.request(lambda i=i: calls.append(i))
            assert scheduler.pending
            await asyncio.sleep(0.05)
            assert not scheduler.pending

        asyncio.run(run())
        assert calls == [4]

    def test_cancel(self) -> None:
        calls: list[int] = []

        async def run() -> None:
            scheduler = AsyncioFrameScheduler(interval_ms=1)
            scheduler.request(lambda: calls.append(1))
            scheduler.cancel()
            await asyncio.sleep(0.02)

        asyncio.run(run())
        assert calls == []

    def test_failing_callback_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        def boom() -> None:
            raise RuntimeError("render failed")

        async def run() -> None:
            scheduler = AsyncioFrameScheduler(interval_ms=1)
            scheduler.request(boom)
            await asyncio.sleep(0.02)

        asyncio.run(run())
        assert "Frame callback failed" in caplog.text
