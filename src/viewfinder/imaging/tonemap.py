"""Sigmoid tone mapping for merged HDR images.

Each colour value ``v`` is replaced by

    curve(v) = round(255 * sigmoid(6 * (v / 255 - 0.5)))

an S-curve that expands contrast around mid-grey and compresses the ends
(0 maps to 12, 128 to 128, 255 to 243). The curve only depends on ``v``,
so it is evaluated once into a 256-entry lookup table.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from viewfinder.imaging.types import CHANNELS_RGB, MergedImage

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = ["DEFAULT_STEEPNESS", "ToneMapper", "tone_curve"]

#: Sigmoid gain applied to the centred input.
DEFAULT_STEEPNESS = 6.0


def tone_curve(steepness: float = DEFAULT_STEEPNESS) -> NDArray[np.uint8]:
    """Build the 256-entry lookup table for the S-curve.

    Args:
        steepness: Gain inside the sigmoid. Must be positive.

    Returns:
        ``uint8`` array where ``table[v]`` is the mapped value of ``v``.

    Raises:
        ValueError: If steepness is not positive.

    Example:
        >>> table = tone_curve()
        >>> int(table[0]), int(table[128]), int(table[255])
        (12, 128, 243)
    """
    if steepness <= 0:
        raise ValueError(f"steepness must be positive, got {steepness}")
    v = np.arange(256, dtype=np.float64)
    z = steepness * (v / 255.0 - 0.5)
    curved = 255.0 / (1.0 + np.exp(-z))
    return np.clip(np.rint(curved), 0, 255).astype(np.uint8)


class ToneMapper:
    """Applies the S-curve to the RGB channels of a merged image.

    Stateless apart from the precomputed table; safe to share between
    threads as long as each call gets its own image.
    """

    def __init__(self, steepness: float = DEFAULT_STEEPNESS) -> None:
        self._table = tone_curve(steepness)

    @property
    def table(self) -> NDArray[np.uint8]:
        """Copy of the lookup table."""
        return self._table.copy()

    def apply(self, image: MergedImage) -> MergedImage:
        """Tone-map ``image`` in place and return it.

        Args:
            image: Merged RGBA image. Alpha is left untouched.

        Returns:
            The same ``image`` object.
        """
        rgb = image.pixels[..., :CHANNELS_RGB]
        rgb[...] = self._table[rgb]
        return image
