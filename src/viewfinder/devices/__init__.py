"""Device layer: exposure control, bracketing, capture modes and sinks."""

from viewfinder.devices.bracket import (
    DEFAULT_BRACKET_OFFSETS,
    BracketController,
    BracketPlan,
    BracketSession,
    StillCapture,
)
from viewfinder.devices.capture import (
    CaptureContext,
    CaptureMode,
    CaptureOutcome,
    CapturePipeline,
    CaptureStatus,
    CaptureStrategy,
    HdrBracketStrategy,
    NotImplementedStrategy,
    SingleShotStrategy,
    strategy_for,
    timestamped_filename,
)
from viewfinder.devices.exposure import ExposureActuator, ExposureControl, ExposureRange
from viewfinder.devices.sink import JPEG_MIME_TYPE, CaptureSink, DirectorySink

__all__ = [
    # Exposure
    "ExposureActuator",
    "ExposureControl",
    "ExposureRange",
    # Bracket
    "DEFAULT_BRACKET_OFFSETS",
    "BracketController",
    "BracketPlan",
    "BracketSession",
    "StillCapture",
    # Capture
    "CaptureContext",
    "CaptureMode",
    "CaptureOutcome",
    "CapturePipeline",
    "CaptureStatus",
    "CaptureStrategy",
    "HdrBracketStrategy",
    "NotImplementedStrategy",
    "SingleShotStrategy",
    "strategy_for",
    "timestamped_filename",
    # Sink
    "JPEG_MIME_TYPE",
    "CaptureSink",
    "DirectorySink",
]
