"""Per-frame luma analysis for the live viewfinder.

Both analyzers are read-only over a ``LumaFrame`` and allocate fresh
results on every call. ``FrameAnalysisWorker`` runs them off the display
thread behind a keep-latest frame slot.
"""

from viewfinder.analysis.frame import LumaFrame, MalformedFrameError
from viewfinder.analysis.histogram import HISTOGRAM_BUCKETS, Histogram, HistogramAnalyzer
from viewfinder.analysis.worker import (
    FrameAnalysis,
    FrameAnalysisWorker,
    LatestFrameSlot,
    SlotClosedError,
)
from viewfinder.analysis.zebra import (
    DEFAULT_PEAKING_THRESHOLD,
    DEFAULT_ZEBRA_THRESHOLD,
    AnalysisGrid,
    GridAnalysis,
    ZebraPeakingAnalyzer,
    cell_bounds,
)

__all__ = [
    # Frame
    "LumaFrame",
    "MalformedFrameError",
    # Histogram
    "HISTOGRAM_BUCKETS",
    "Histogram",
    "HistogramAnalyzer",
    # Zebra / peaking
    "DEFAULT_PEAKING_THRESHOLD",
    "DEFAULT_ZEBRA_THRESHOLD",
    "AnalysisGrid",
    "GridAnalysis",
    "ZebraPeakingAnalyzer",
    "cell_bounds",
    # Worker
    "FrameAnalysis",
    "FrameAnalysisWorker",
    "LatestFrameSlot",
    "SlotClosedError",
]
