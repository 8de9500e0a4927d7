"""Viewfinder pipeline statistics.

Collects the numbers needed to tell whether frame analysis keeps up with
the camera and how capture requests are faring:
- Per-frame analysis duration (min, max, avg, p95) over a rolling window
- Frames analysed, frames dropped by the latest-frame slot, analyzer errors
- Capture outcomes by status

Thread-safe: the analysis worker records while the UI thread reads.

Example:
    stats = AnalysisStats()

    stats.record_frame(duration_ms=4.2)
    stats.record_dropped_frames(3)
    stats.record_capture("saved")

    summary = stats.get_summary()
    print(f"p95 analysis: {summary.p95_duration_ms:.1f}ms")
    print(f"drop rate: {summary.drop_rate:.1%}")
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

#: Default number of frame timings retained. Roughly 30 seconds of preview
#: at 30 fps, enough for a stable p95.
DEFAULT_STATS_WINDOW_SIZE: int = 1000


def _utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


@dataclass
class StatsSummary:
    """Point-in-time summary of pipeline statistics.

    Attributes:
        frames_analysed: Frames run through both analyzers.
        frames_dropped: Frames superseded in the latest-frame slot before
            the worker picked them up.
        analyzer_errors: Frames whose analysis raised.
        drop_rate: frames_dropped / (frames_analysed + frames_dropped).
        min_duration_ms: Fastest analysis in the window.
        max_duration_ms: Slowest analysis in the window.
        avg_duration_ms: Mean analysis time in the window.
        p95_duration_ms: 95th percentile analysis time in the window.
        capture_outcomes: Count of capture requests by outcome status.
        last_frame_time: UTC time of the most recent analysed frame.
        uptime_seconds: Time since creation or last reset.
    """

    frames_analysed: int = 0
    frames_dropped: int = 0
    analyzer_errors: int = 0
    drop_rate: float = 0.0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    avg_duration_ms: float = 0.0
    p95_duration_ms: float = 0.0
    capture_outcomes: dict[str, int] = field(default_factory=dict)
    last_frame_time: datetime | None = None
    uptime_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert the summary to JSON-compatible primitives.

        Used by ``viewfinder capture --json`` and by applications that ship
        pipeline health to a dashboard.

        Returns:
            Dict with every field; ``last_frame_time`` as ISO string or None
            and ``capture_outcomes`` copied.

        Example:
            >>> data = stats.get_summary().to_dict()
            >>> data["frames_analysed"]
            120
        """
        return {
            "frames_analysed": self.frames_analysed,
            "frames_dropped": self.frames_dropped,
            "analyzer_errors": self.analyzer_errors,
            "drop_rate": self.drop_rate,
            "min_duration_ms": self.min_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "avg_duration_ms": self.avg_duration_ms,
            "p95_duration_ms": self.p95_duration_ms,
            "capture_outcomes": self.capture_outcomes.copy(),
            "last_frame_time": (
                self.last_frame_time.isoformat() if self.last_frame_time else None
            ),
            "uptime_seconds": self.uptime_seconds,
        }


class AnalysisStats:
    """Thread-safe statistics collector for the viewfinder pipeline.

    Keeps cumulative counters plus a bounded window of analysis durations,
    so memory stays flat no matter how long the preview runs.

    Usage:
        stats = AnalysisStats(window_size=300)
        worker = FrameAnalysisWorker(histogram, zebra, stats=stats)
        ...
        print(stats.get_summary().avg_duration_ms)
    """

    def __init__(self, window_size: int = DEFAULT_STATS_WINDOW_SIZE) -> None:
        """Create an empty collector.

        Args:
            window_size: Number of most recent frame durations kept for the
                min/max/avg/p95 figures. Must be positive.

        Returns:
            None.

        Raises:
            ValueError: If window_size is not positive.
        """
        if window_size <= 0:
            raise ValueError(f"window_size must be positive, got {window_size}")
        self._window_size = window_size
        self._durations: deque[float] = deque(maxlen=window_size)
        self._frames_analysed = 0
        self._frames_dropped = 0
        self._analyzer_errors = 0
        self._capture_outcomes: dict[str, int] = {}
        self._last_frame_time: datetime | None = None
        self._start_time = time.monotonic()
        self._lock = threading.Lock()

    @property
    def window_size(self) -> int:
        """Maximum number of durations retained."""
        return self._window_size

    def record_frame(self, duration_ms: float) -> None:
        """Record one successfully analysed frame.

        Args:
            duration_ms: Wall time spent in both analyzers for the frame.

        Returns:
            None.
        """
        with self._lock:
            self._durations.append(duration_ms)
            self._frames_analysed += 1
            self._last_frame_time = _utc_now()

    def record_dropped_frames(self, count: int = 1) -> None:
        """Record frames discarded by the latest-frame slot.

        Args:
            count: Number of frames superseded. Zero is accepted and ignored.

        Returns:
            None.
        """
        if count <= 0:
            return
        with self._lock:
            self._frames_dropped += count

    def record_analyzer_error(self) -> None:
        """Record a frame whose analysis raised."""
        with self._lock:
            self._analyzer_errors += 1

    def record_capture(self, status: str) -> None:
        """Record the outcome of one capture request.

        Args:
            status: Outcome label, normally a ``CaptureStatus`` value such as
                ``"saved"`` or ``"no_images"``.

        Returns:
            None.
        """
        with self._lock:
            self._capture_outcomes[status] = self._capture_outcomes.get(status, 0) + 1

    def get_summary(self) -> StatsSummary:
        """Compute a summary snapshot.

        Counters and durations are copied under the lock; sorting for the
        percentile happens outside it so the worker is never held up by a
        reader.

        Returns:
            StatsSummary for the current state.

        Example:
            >>> stats = AnalysisStats()
            >>> stats.record_frame(2.0)
            >>> stats.record_frame(4.0)
            >>> stats.get_summary().avg_duration_ms
            3.0
        """
        with self._lock:
            durations = list(self._durations)
            analysed = self._frames_analysed
            dropped = self._frames_dropped
            errors = self._analyzer_errors
            outcomes = self._capture_outcomes.copy()
            last_frame_time = self._last_frame_time
            start_time = self._start_time

        if durations:
            min_dur = min(durations)
            max_dur = max(durations)
            avg_dur = sum(durations) / len(durations)
            p95_dur = _percentile(sorted(durations), 95)
        else:
            min_dur = max_dur = avg_dur = p95_dur = 0.0

        offered = analysed + dropped
        return StatsSummary(
            frames_analysed=analysed,
            frames_dropped=dropped,
            analyzer_errors=errors,
            drop_rate=dropped / offered if offered > 0 else 0.0,
            min_duration_ms=min_dur,
            max_duration_ms=max_dur,
            avg_duration_ms=avg_dur,
            p95_duration_ms=p95_dur,
            capture_outcomes=outcomes,
            last_frame_time=last_frame_time,
            uptime_seconds=time.monotonic() - start_time,
        )

    def reset(self) -> None:
        """Clear all counters and durations and restart the uptime clock."""
        with self._lock:
            self._durations.clear()
            self._frames_analysed = 0
            self._frames_dropped = 0
            self._analyzer_errors = 0
            self._capture_outcomes.clear()
            self._last_frame_time = None
            self._start_time = time.monotonic()

    def to_dict(self) -> dict[str, Any]:
        """Export the current summary with a timestamp.

        Returns:
            ``{"pipeline": {...summary...}, "timestamp": "<iso>"}``.
        """
        return {
            "pipeline": self.get_summary().to_dict(),
            "timestamp": _utc_now().isoformat(),
        }


def _percentile(sorted_data: list[float], p: float) -> float:
    """Percentile of pre-sorted data with linear interpolation.

    Matches numpy's default ``linear`` method.

    Args:
        sorted_data: Ascending values. Empty input returns 0.0.
        p: Percentile in [0, 100].

    Returns:
        Interpolated percentile value.

    Raises:
        ValueError: If p is outside [0, 100].

    Example:
        >>> _percentile([1.0, 2.0, 3.0, 4.0, 5.0], 50)
        3.0
        >>> _percentile([100.0, 150.0, 200.0], 95)
        195.0
    """
    if not 0 <= p <= 100:
        raise ValueError(f"Percentile must be between 0 and 100, got {p}")

    if not sorted_data:
        return 0.0

    k = (len(sorted_data) - 1) * (p / 100)
    floor_idx = int(k)
    ceil_idx = min(floor_idx + 1, len(sorted_data) - 1)

    if floor_idx == ceil_idx:
        return sorted_data[floor_idx]

    fraction = k - floor_idx
    return sorted_data[floor_idx] * (1 - fraction) + sorted_data[ceil_idx] * fraction
