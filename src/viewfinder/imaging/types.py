"""Raster types shared by the bracket, merge and tone-mapping stages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = ["CHANNELS_RGB", "CHANNELS_RGBA", "DecodedImage", "MergedImage"]

CHANNELS_RGB = 3
CHANNELS_RGBA = 4


def _check_pixels(width: int, height: int, pixels: NDArray[np.uint8]) -> None:
    """Validate the ``(height, width, channels)`` uint8 layout."""
    if pixels.dtype != np.uint8:
        raise ValueError(f"pixels must be uint8, got {pixels.dtype}")
    if pixels.ndim != 3 or pixels.shape[2] not in (CHANNELS_RGB, CHANNELS_RGBA):
        raise ValueError(f"pixels must be (H, W, 3|4), got shape {pixels.shape}")
    if pixels.shape[:2] != (height, width):
        raise ValueError(
            f"pixels shape {pixels.shape[:2]} does not match {width}x{height}"
        )


@dataclass(frozen=True, eq=False, slots=True)
class DecodedImage:
    """One decoded still from a bracket shot.

    Attributes:
        width: Pixels per row.
        height: Number of rows.
        pixels: ``(height, width, C)`` uint8 array, RGB (C=3) or RGBA (C=4).
        ev_index: Exposure compensation index the shot was taken at, if known.
    """

    width: int
    height: int
    pixels: NDArray[np.uint8]
    ev_index: int | None = None

    def __post_init__(self) -> None:
        """Reject arrays that do not match the declared geometry."""
        _check_pixels(self.width, self.height, self.pixels)

    @classmethod
    def from_array(cls, pixels: NDArray[np.uint8], ev_index: int | None = None) -> DecodedImage:
        """Wrap an ``(H, W, C)`` array, taking width and height from its shape."""
        arr = np.asarray(pixels)
        if arr.ndim != 3:
            raise ValueError(f"pixels must be (H, W, C), got shape {arr.shape}")
        height, width = arr.shape[:2]
        return cls(width=width, height=height, pixels=arr, ev_index=ev_index)

    @property
    def channels(self) -> int:
        """3 for RGB, 4 for RGBA."""
        return int(self.pixels.shape[2])

    @property
    def size(self) -> tuple[int, int]:
        """``(width, height)``."""
        return self.width, self.height


@dataclass(eq=False, slots=True)
class MergedImage:
    """Result of an HDR merge: always RGBA with opaque alpha.

    The tone mapper rewrites ``pixels`` in place; after that the image is
    handed to the sink and treated as immutable.

    Attributes:
        width: Pixels per row.
        height: Number of rows.
        pixels: ``(height, width, 4)`` uint8 RGBA array.
        source_count: Number of images that contributed to the mean.
    """

    width: int
    height: int
    pixels: NDArray[np.uint8]
    source_count: int = 1

    def __post_init__(self) -> None:
        """Reject anything other than an RGBA array of the declared size."""
        _check_pixels(self.width, self.height, self.pixels)
        if self.pixels.shape[2] != CHANNELS_RGBA:
            raise ValueError("merged image must be RGBA")

    @property
    def rgb(self) -> NDArray[np.uint8]:
        """View of the colour channels (no copy)."""
        return self.pixels[..., :CHANNELS_RGB]

    @property
    def alpha(self) -> NDArray[np.uint8]:
        """View of the alpha channel (no copy)."""
        return self.pixels[..., CHANNELS_RGB]
