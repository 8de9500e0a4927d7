"""Luminance histogram analyzer.

Counts luma values of every frame into 256 buckets for the viewfinder's
histogram display. Runs on the analysis worker for every frame, so the
per-frame cost is a couple of numpy calls and no per-pixel Python work.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from viewfinder.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from viewfinder.analysis.frame import LumaFrame

logger = get_logger(__name__)

__all__ = ["HISTOGRAM_BUCKETS", "Histogram", "HistogramAnalyzer"]

#: One bucket per 8-bit luma value.
HISTOGRAM_BUCKETS = 256


@dataclass(frozen=True, eq=False, slots=True)
class Histogram:
    """256-bucket luma histogram of one frame.

    Attributes:
        counts: ``int64`` array of length 256 indexed by luma value. The sum
            equals the number of samples examined.
    """

    counts: NDArray[np.int64]

    @classmethod
    def empty(cls) -> Histogram:
        """Return an all-zero histogram."""
        return cls(counts=np.zeros(HISTOGRAM_BUCKETS, dtype=np.int64))

    @property
    def total(self) -> int:
        """Number of samples counted."""
        return int(self.counts.sum())

    @property
    def peak_bucket(self) -> int:
        """Luma value with the highest count (0 for an empty histogram)."""
        return int(np.argmax(self.counts))

    def clipped_fraction(self, threshold: int = 255) -> float:
        """Fraction of samples at or above ``threshold``.

        Business context: A quick highlight-clipping indicator alongside the
        zebra grid; ``threshold=250`` matches the default zebra level.

        Args:
            threshold: Lowest luma value counted as clipped, 0-255.

        Returns:
            Value in [0, 1]; 0.0 for an empty histogram.

        Raises:
            ValueError: If threshold is outside 0-255.
        """
        if not 0 <= threshold < HISTOGRAM_BUCKETS:
            raise ValueError(f"threshold must be 0-255, got {threshold}")
        total = self.total
        if total == 0:
            return 0.0
        return int(self.counts[threshold:].sum()) / total

    def as_list(self) -> list[int]:
        """Return counts as plain ints, e.g. for JSON output."""
        return [int(c) for c in self.counts]


class HistogramAnalyzer:
    """Computes a fresh ``Histogram`` for each frame.

    Sampling rule: every row ``y`` in ``[0, height)`` is read as the
    ``row_stride`` bytes starting at ``y * row_stride``; within that row the
    bytes at indices ``0, pixel_stride, 2 * pixel_stride, ...`` below
    ``width`` are counted. A frame therefore contributes
    ``height * ceil(width / pixel_stride)`` samples.

    Malformed frames (no data, bad strides, fewer than
    ``row_stride * height`` bytes) produce an all-zero histogram; a garbled
    frame must never take down the live preview.

    Example:
        >>> analyzer = HistogramAnalyzer()
        >>> hist = analyzer.compute(LumaFrame.from_array(np.full((4, 4), 7)))
        >>> int(hist.counts[7]), hist.total
        (16, 16)
    """

    def compute(self, frame: LumaFrame) -> Histogram:
        """Count the frame's sampled luma values.

        Args:
            frame: Frame to analyse. Not retained.

        Returns:
            New Histogram; buckets never carry over from earlier frames.
        """
        if frame.is_empty:
            return Histogram.empty()

        row_stride = frame.row_stride
        needed = row_stride * frame.height
        if row_stride <= 0 or frame.pixel_stride <= 0 or len(frame.data) < needed:
            logger.warning(
                "Malformed frame, returning empty histogram",
                width=frame.width,
                height=frame.height,
                row_stride=row_stride,
                pixel_stride=frame.pixel_stride,
                data_bytes=len(frame.data),
            )
            return Histogram.empty()

        rows = frame.buffer()[:needed].reshape(frame.height, row_stride)
        samples = rows[:, 0 : min(frame.width, row_stride) : frame.pixel_stride]
        counts = np.bincount(samples.ravel(), minlength=HISTOGRAM_BUCKETS)
        return Histogram(counts=counts.astype(np.int64, copy=False))
