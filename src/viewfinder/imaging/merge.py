"""HDR merge by per-channel averaging of aligned exposures.

The first image fixes the output size. Later images with any other size
are left out of the average; no alignment or warping is attempted. The
mean divides by the number of images that actually contributed, so a
skipped image does not darken the result.

Example:
    images = controller.capture_bracket(session)
    if images:
        merged = merge(images)
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from viewfinder.errors import EmptyMergeError
from viewfinder.imaging.types import CHANNELS_RGB, DecodedImage, MergedImage
from viewfinder.observability import get_logger

logger = get_logger(__name__)

__all__ = ["EmptyMergeError", "merge"]

_OPAQUE = 255


def merge(images: Sequence[DecodedImage]) -> MergedImage:
    """Average the RGB channels of dimension-matching images.

    Per pixel and channel the output is ``round(sum / contributing)``
    clamped to 0-255, with halves rounded up. Alpha is always opaque; input
    alpha is ignored. With one contributing image the result equals its RGB
    data.

    Business context: Final step before tone mapping in the HDR capture
    mode. Bracket shots that failed are already absent from ``images``, so
    the merge works with whatever subset of the sequence survived.

    Args:
        images: Decoded bracket shots, RGB or RGBA. Must not be empty.

    Returns:
        New RGBA MergedImage sized like ``images[0]``.

    Raises:
        EmptyMergeError: If ``images`` is empty. Callers check the bracket
            result before merging.

    Example:
        >>> merged = merge([dark, normal, bright])
        >>> merged.source_count
        3
    """
    if not images:
        raise EmptyMergeError("merge requires at least one image")

    first = images[0]
    width, height = first.width, first.height
    acc = np.zeros((height, width, CHANNELS_RGB), dtype=np.uint32)
    contributing = 0

    for index, image in enumerate(images):
        if (image.width, image.height) != (width, height):
            logger.warning(
                "Skipping image with mismatched dimensions",
                index=index,
                expected=f"{width}x{height}",
                actual=f"{image.width}x{image.height}",
            )
            continue
        acc += image.pixels[..., :CHANNELS_RGB]
        contributing += 1

    # Integer round-half-up of acc / contributing.
    mean = (2 * acc + contributing) // (2 * contributing)

    pixels = np.empty((height, width, 4), dtype=np.uint8)
    pixels[..., :CHANNELS_RGB] = np.clip(mean, 0, 255)
    pixels[..., CHANNELS_RGB] = _OPAQUE

    logger.debug(
        "Merged bracket",
        contributing=contributing,
        skipped=len(images) - contributing,
        size=f"{width}x{height}",
    )
    return MergedImage(width=width, height=height, pixels=pixels, source_count=contributing)
