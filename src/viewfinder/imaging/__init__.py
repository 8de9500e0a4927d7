"""HDR merge and tone mapping of bracketed stills."""

from viewfinder.imaging.merge import EmptyMergeError, merge
from viewfinder.imaging.tonemap import DEFAULT_STEEPNESS, ToneMapper, tone_curve
from viewfinder.imaging.types import (
    CHANNELS_RGB,
    CHANNELS_RGBA,
    DecodedImage,
    MergedImage,
)

__all__ = [
    "CHANNELS_RGB",
    "CHANNELS_RGBA",
    "DEFAULT_STEEPNESS",
    "DecodedImage",
    "EmptyMergeError",
    "MergedImage",
    "ToneMapper",
    "merge",
    "tone_curve",
]
