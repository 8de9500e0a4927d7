"""Tests for the latest-frame slot and the background analysis worker."""

import threading
import time

import numpy as np
import pytest

from viewfinder.analysis.frame import LumaFrame
from viewfinder.analysis.worker import (
    FrameAnalysis,
    FrameAnalysisWorker,
    LatestFrameSlot,
    SlotClosedError,
)
from viewfinder.observability import AnalysisStats


def _frame(value: int, size: int = 8) -> LumaFrame:
    return LumaFrame.from_array(np.full((size, size), value, dtype=np.uint8))


class TestLatestFrameSlot:
    """Tests for the single-slot exchange."""

    def test_offer_then_take(self):
        """Verifies a single offered frame is returned by take()."""
        slot = LatestFrameSlot()
        frame = _frame(1)

        assert slot.offer(frame) is False
        assert slot.take(timeout=0.1) is frame

    def test_newer_frame_replaces_pending(self):
        """Verifies offers replace the pending frame and count drops.

        Arrangement:
        1. Three frames offered without any take.

        Action:
        Takes once, then takes again with a short timeout.

        Assertion Strategy:
        - First take returns the newest frame.
        - Second take times out with None (only one frame was held).
        - dropped == 2.
        """
        slot = LatestFrameSlot()
        frames = [_frame(v) for v in (1, 2, 3)]

        results = [slot.offer(f) for f in frames]

        assert results == [False, True, True]
        assert slot.take(timeout=0.1) is frames[-1]
        assert slot.take(timeout=0.01) is None
        assert slot.dropped == 2

    def test_take_blocks_until_offer(self):
        """Verifies take() wakes up when another thread offers."""
        slot = LatestFrameSlot()
        frame = _frame(5)
        received = []

        consumer = threading.Thread(target=lambda: received.append(slot.take(timeout=5)))
        consumer.start()
        slot.offer(frame)
        consumer.join(timeout=5)

        assert received == [frame]

    def test_close_wakes_consumer_and_rejects_offers(self):
        """Verifies close() releases a waiting take() and blocks new offers."""
        slot = LatestFrameSlot()
        received = []
        consumer = threading.Thread(target=lambda: received.append(slot.take()))
        consumer.start()

        slot.close()
        consumer.join(timeout=5)

        assert received == [None]
        assert slot.closed
        with pytest.raises(SlotClosedError):
            slot.offer(_frame(1))

    def test_close_discards_pending(self):
        """Verifies a pending frame is dropped on close."""
        slot = LatestFrameSlot()
        slot.offer(_frame(1))
        slot.close()
        assert slot.take(timeout=0) is None


class TestAnalyse:
    """Tests for synchronous FrameAnalysisWorker.analyse()."""

    def test_produces_snapshot(self, quadrant_frame):
        """Verifies analyse() runs both analyzers and publishes latest().

        Arrangement:
        1. Worker with a 2x2 grid, not started.

        Action:
        Analyses the quadrant frame.

        Assertion Strategy:
        - Snapshot has sequence 0, geometry and both grids.
        - latest() returns the same snapshot.
        - stats count one analysed frame.
        """
        stats = AnalysisStats()
        worker = FrameAnalysisWorker(grid_width=2, grid_height=2, stats=stats)

        result = worker.analyse(quadrant_frame)

        assert isinstance(result, FrameAnalysis)
        assert result.sequence == 0
        assert (result.width, result.height) == (8, 8)
        assert result.histogram.counts[255] == 16
        assert result.zebra.flat() == [True, False, False, False]
        assert result.duration_ms >= 0
        assert worker.latest() is result
        assert stats.get_summary().frames_analysed == 1

    def test_sequence_increments(self):
        """Verifies each analysis gets the next sequence number."""
        worker = FrameAnalysisWorker(grid_width=2, grid_height=2)
        sequences = [worker.analyse(_frame(v)).sequence for v in (1, 2, 3)]
        assert sequences == [0, 1, 2]

    def test_snapshot_is_immutable(self, quadrant_frame):
        """Verifies FrameAnalysis fields cannot be reassigned."""
        result = FrameAnalysisWorker(2, 2).analyse(quadrant_frame)
        with pytest.raises(AttributeError):
            result.sequence = 5

    def test_rejects_bad_grid(self):
        """Verifies non-positive grid dimensions are rejected up front."""
        with pytest.raises(ValueError):
            FrameAnalysisWorker(grid_width=0)


class _ExplodingHistogram:
    """Histogram analyzer that fails on frames of value 13."""

    def __init__(self):
        from viewfinder.analysis.histogram import HistogramAnalyzer

        self._real = HistogramAnalyzer()

    def compute(self, frame):
        if frame.plane()[0, 0] == 13:
            raise RuntimeError("boom")
        return self._real.compute(frame)


@pytest.mark.slow
class TestWorkerThread:
    """Tests for the background thread."""

    def test_callback_receives_results(self):
        """Verifies submitted frames are analysed and passed to on_result.

        Arrangement:
        1. Worker with a callback that sets an event.

        Action:
        Starts the worker, submits one frame, waits for the event.

        Assertion Strategy:
        - Callback receives a FrameAnalysis of the submitted frame.
        - Worker stops cleanly.
        """
        done = threading.Event()
        results = []

        def on_result(result):
            results.append(result)
            done.set()

        with FrameAnalysisWorker(grid_width=2, grid_height=2, on_result=on_result) as worker:
            worker.submit(_frame(200))
            assert done.wait(timeout=5)

        assert not worker.is_running
        assert results[0].histogram.counts[200] == 64

    def test_analyzer_error_does_not_kill_worker(self):
        """Verifies an analyzer exception is counted and the loop continues.

        Arrangement:
        1. Histogram analyzer raising for frames of value 13.

        Action:
        Submits a failing frame, waits, then submits a good frame.

        Assertion Strategy:
        - The good frame is still analysed.
        - analyzer_errors == 1.
        """
        good = threading.Event()
        stats = AnalysisStats()
        worker = FrameAnalysisWorker(
            grid_width=2,
            grid_height=2,
            histogram=_ExplodingHistogram(),
            stats=stats,
            on_result=lambda result: good.set(),
        )
        worker.start()
        try:
            worker.submit(_frame(13))
            for _ in range(500):
                if stats.get_summary().analyzer_errors:
                    break
                time.sleep(0.01)
            worker.submit(_frame(40))
            assert good.wait(timeout=5)
        finally:
            worker.stop()

        summary = stats.get_summary()
        assert summary.analyzer_errors == 1
        assert summary.frames_analysed == 1

    def test_callback_error_is_contained(self):
        """Verifies a raising callback does not stop later frames."""
        calls = []
        second = threading.Event()

        def on_result(result):
            calls.append(result.sequence)
            if len(calls) == 1:
                raise ValueError("ui went away")
            second.set()

        worker = FrameAnalysisWorker(grid_width=2, grid_height=2, on_result=on_result)
        worker.start()
        try:
            worker.submit(_frame(1))
            for _ in range(500):
                if calls:
                    break
                time.sleep(0.01)
            worker.submit(_frame(2))
            assert second.wait(timeout=5)
        finally:
            worker.stop()

        assert calls == [0, 1]

    def test_stop_is_idempotent_and_submit_after_stop_is_ignored(self):
        """Verifies stop() twice is safe and later submits are no-ops."""
        worker = FrameAnalysisWorker(grid_width=2, grid_height=2)
        worker.start()
        worker.stop()
        worker.stop()

        worker.submit(_frame(1))

        assert worker.latest() is None
        with pytest.raises(RuntimeError):
            worker.start()

    def test_start_twice_raises(self):
        """Verifies a running worker cannot be started again."""
        worker = FrameAnalysisWorker(grid_width=2, grid_height=2)
        worker.start()
        try:
            with pytest.raises(RuntimeError):
                worker.start()
        finally:
            worker.stop()
