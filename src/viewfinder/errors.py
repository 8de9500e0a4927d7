"""Exception hierarchy for viewfinder-core."""

from __future__ import annotations

__all__ = [
    "BracketCancelledError",
    "CaptureFailedError",
    "DecodeError",
    "EmptyMergeError",
    "ExposureControlBusyError",
    "ViewfinderError",
]


class ViewfinderError(Exception):
    """Base exception for viewfinder operations."""

    pass


class CaptureFailedError(ViewfinderError):
    """Raised by a still capture that produced no usable file."""

    pass


class DecodeError(ViewfinderError):
    """Raised when a staged still cannot be decoded."""

    pass


class EmptyMergeError(ViewfinderError, ValueError):
    """Raised when merge is called without any image."""

    pass


class BracketCancelledError(ViewfinderError):
    """Raised when the owning session is cancelled mid-bracket."""

    pass


class ExposureControlBusyError(ViewfinderError):
    """Raised when exclusive exposure control is already held."""

    pass
