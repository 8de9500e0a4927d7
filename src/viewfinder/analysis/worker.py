"""Background frame analysis with a keep-latest frame slot.

The frame source calls ``FrameAnalysisWorker.submit()`` from its own thread
at whatever rate the sensor delivers. A dedicated daemon thread drains a
single-slot ``LatestFrameSlot`` and runs both analyzers on each frame it
picks up. When the source outpaces the worker, pending frames are replaced
rather than queued, so memory stays bounded and the overlays always follow
the newest frame.

Example:
    worker = FrameAnalysisWorker(grid_width=64, grid_height=36)
    worker.start()

    for frame in source:
        worker.submit(frame)
        snapshot = worker.latest()
        if snapshot is not None:
            draw_overlays(snapshot.zebra, snapshot.peaking)

    worker.stop()
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from types import TracebackType

from viewfinder.analysis.frame import LumaFrame
from viewfinder.analysis.histogram import Histogram, HistogramAnalyzer
from viewfinder.analysis.zebra import (
    DEFAULT_PEAKING_THRESHOLD,
    DEFAULT_ZEBRA_THRESHOLD,
    AnalysisGrid,
    ZebraPeakingAnalyzer,
)
from viewfinder.observability import AnalysisStats, get_logger

logger = get_logger(__name__)

__all__ = [
    "FrameAnalysis",
    "FrameAnalysisWorker",
    "LatestFrameSlot",
    "SlotClosedError",
]

#: Seconds ``stop()`` waits for the worker thread to finish.
DEFAULT_JOIN_TIMEOUT = 2.0


class SlotClosedError(RuntimeError):
    """Raised by ``LatestFrameSlot.offer()`` after the slot was closed."""


class LatestFrameSlot:
    """Single-slot exchange between the frame source and the worker.

    Holds at most one pending frame. ``offer()`` never blocks: it replaces
    any frame the consumer has not taken yet and counts it as dropped.
    ``take()`` blocks until a frame is available or the slot is closed.

    Thread Safety:
        All state is guarded by one ``threading.Condition``. Any number of
        producers may offer; a single consumer is expected to take.
    """

    def __init__(self) -> None:
        """Create an empty, open slot."""
        self._cond = threading.Condition()
        self._pending: LumaFrame | None = None
        self._closed = False
        self._dropped = 0

    @property
    def dropped(self) -> int:
        """Total frames replaced before the consumer took them."""
        with self._cond:
            return self._dropped

    @property
    def closed(self) -> bool:
        """True once ``close()`` has been called."""
        with self._cond:
            return self._closed

    def offer(self, frame: LumaFrame) -> bool:
        """Publish a frame, replacing any pending one.

        Args:
            frame: Newest frame from the source.

        Returns:
            True if an older pending frame was dropped to make room.

        Raises:
            SlotClosedError: If the slot has been closed.
        """
        with self._cond:
            if self._closed:
                raise SlotClosedError("frame slot is closed")
            replaced = self._pending is not None
            if replaced:
                self._dropped += 1
            self._pending = frame
            self._cond.notify()
            return replaced

    def take(self, timeout: float | None = None) -> LumaFrame | None:
        """Remove and return the pending frame, waiting if necessary.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely.

        Returns:
            The pending frame, or None on timeout or when the slot is closed
            and empty.
        """
        with self._cond:
            self._cond.wait_for(
                lambda: self._pending is not None or self._closed, timeout=timeout
            )
            frame, self._pending = self._pending, None
            return frame

    def close(self) -> None:
        """Close the slot, discard any pending frame and wake the consumer."""
        with self._cond:
            self._closed = True
            self._pending = None
            self._cond.notify_all()


@dataclass(frozen=True, slots=True)
class FrameAnalysis:
    """Immutable result of analysing one frame.

    Attributes:
        sequence: 0-based count of frames analysed by this worker.
        width: Frame width in pixels.
        height: Frame height in pixels.
        histogram: 256-bucket luma histogram.
        zebra: Overexposure flags per grid cell.
        peaking: Mean gradient magnitude per grid cell.
        duration_ms: Time spent in both analyzers.
    """

    sequence: int
    width: int
    height: int
    histogram: Histogram
    zebra: AnalysisGrid
    peaking: AnalysisGrid
    duration_ms: float


class FrameAnalysisWorker:
    """Runs histogram and zebra/peaking analysis on a background thread.

    Each frame is processed to completion before the next one is taken, so
    analysis never re-enters. Analyzer exceptions are logged and counted,
    and the worker carries on with the next frame.

    Can be used as a context manager, which starts and stops the thread.

    Example:
        with FrameAnalysisWorker(on_result=publish) as worker:
            for frame in camera.frames():
                worker.submit(frame)
    """

    def __init__(
        self,
        grid_width: int = 64,
        grid_height: int = 36,
        zebra_threshold: int = DEFAULT_ZEBRA_THRESHOLD,
        peaking_threshold: float = DEFAULT_PEAKING_THRESHOLD,
        histogram: HistogramAnalyzer | None = None,
        grid_analyzer: ZebraPeakingAnalyzer | None = None,
        stats: AnalysisStats | None = None,
        on_result: Callable[[FrameAnalysis], None] | None = None,
    ) -> None:
        """Create a stopped worker.

        Args:
            grid_width: Cells per row of the zebra and peaking grids.
            grid_height: Cell rows of the zebra and peaking grids.
            zebra_threshold: Mean luma that flags a cell as overexposed.
            peaking_threshold: Magnitude carried on the peaking grid.
            histogram: Histogram analyzer (default: new HistogramAnalyzer).
            grid_analyzer: Grid analyzer (default: new ZebraPeakingAnalyzer).
            stats: Collector for timings and drops (default: private one).
            on_result: Called on the worker thread with every snapshot.
                Exceptions it raises are logged and ignored.

        Raises:
            ValueError: If a grid dimension is not positive.
        """
        if grid_width <= 0 or grid_height <= 0:
            raise ValueError(
                f"grid dimensions must be positive, got {grid_width}x{grid_height}"
            )
        self._grid_width = grid_width
        self._grid_height = grid_height
        self._zebra_threshold = zebra_threshold
        self._peaking_threshold = peaking_threshold
        self._histogram = histogram or HistogramAnalyzer()
        self._grid_analyzer = grid_analyzer or ZebraPeakingAnalyzer()
        self._stats = stats or AnalysisStats()
        self._on_result = on_result

        self._slot = LatestFrameSlot()
        self._latest: FrameAnalysis | None = None
        self._latest_lock = threading.Lock()
        self._sequence = 0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def stats(self) -> AnalysisStats:
        """Statistics collector used by this worker."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """True while the worker thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the worker thread.

        Raises:
            RuntimeError: If the worker is already running or was stopped.
        """
        if self.is_running:
            raise RuntimeError("analysis worker already running")
        if self._slot.closed:
            raise RuntimeError("analysis worker was stopped and cannot restart")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop, name="viewfinder-analysis", daemon=True
        )
        self._thread.start()
        logger.info(
            "Analysis worker started",
            grid=f"{self._grid_width}x{self._grid_height}",
            zebra_threshold=self._zebra_threshold,
        )

    def stop(self, timeout: float = DEFAULT_JOIN_TIMEOUT) -> None:
        """Stop the worker after the frame in progress, if any.

        Idempotent. A pending frame that was never taken is discarded.

        Args:
            timeout: Seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        self._slot.close()
        thread = self._thread
        if thread is not None:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Analysis worker did not stop in time", timeout=timeout)
            else:
                logger.info("Analysis worker stopped", frames=self._sequence)

    def submit(self, frame: LumaFrame) -> None:
        """Hand the newest frame to the worker without blocking.

        Frames submitted after ``stop()`` are ignored.

        Args:
            frame: Frame from the source. Must stay valid until analysed;
                sources reusing buffers should pass a copy.
        """
        try:
            replaced = self._slot.offer(frame)
        except SlotClosedError:
            logger.debug("Frame submitted after stop, ignoring")
            return
        if replaced:
            self._stats.record_dropped_frames(1)

    def latest(self) -> FrameAnalysis | None:
        """Most recent analysis snapshot, or None before the first frame."""
        with self._latest_lock:
            return self._latest

    def analyse(self, frame: LumaFrame) -> FrameAnalysis:
        """Run both analyzers on one frame synchronously.

        Used by the worker loop and by callers that want a one-off result
        (for example the CLI) without starting a thread.

        Args:
            frame: Frame to analyse.

        Returns:
            New FrameAnalysis. Also becomes ``latest()``.
        """
        start = time.perf_counter()
        histogram = self._histogram.compute(frame)
        zebra, peaking = self._grid_analyzer.compute(
            frame,
            self._grid_width,
            self._grid_height,
            zebra_threshold=self._zebra_threshold,
            peaking_threshold=self._peaking_threshold,
        )
        duration_ms = (time.perf_counter() - start) * 1000.0

        with self._latest_lock:
            result = FrameAnalysis(
                sequence=self._sequence,
                width=frame.width,
                height=frame.height,
                histogram=histogram,
                zebra=zebra,
                peaking=peaking,
                duration_ms=duration_ms,
            )
            self._sequence += 1
            self._latest = result
        self._stats.record_frame(duration_ms)
        return result

    def _run_loop(self) -> None:
        """Worker thread body: take, analyse, publish until stopped."""
        while not self._stop_event.is_set():
            frame = self._slot.take()
            if frame is None:
                continue
            try:
                result = self.analyse(frame)
            except Exception as e:
                self._stats.record_analyzer_error()
                logger.exception("Frame analysis failed", frame=repr(frame), error=str(e))
                continue
            if self._on_result is not None:
                try:
                    self._on_result(result)
                except Exception as e:
                    logger.warning(
                        "Analysis callback raised", sequence=result.sequence, error=str(e)
                    )

    def __enter__(self) -> FrameAnalysisWorker:
        """Start the worker and return it."""
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Stop the worker."""
        self.stop()
