"""Image codec abstractions for dependency injection.

This module provides a Protocol-based interface for the two codec
operations the capture path needs: decoding a staged still into an RGB
``DecodedImage`` and encoding a tone-mapped raster as JPEG for the sink.
``CV2ImageCodec`` is the real implementation using OpenCV; tests can pass
any object with the same methods.

Usage:
    # Production (default)
    codec = CV2ImageCodec()
    image = codec.decode_file(Path("cap_0.jpg"))
    jpeg_bytes = codec.encode_jpeg(merged.pixels, quality=95)

    # Testing
    class FakeCodec:
        def decode_file(self, path): ...
        def encode_jpeg(self, pixels, quality=95): return b"\xff\xd8fake"

Architecture:
    ImageCodec (Protocol) <- CV2ImageCodec (real)
                          <- fakes (tests)

OpenCV works in BGR(A) channel order; conversion to and from the RGB(A)
order used everywhere else happens inside this module only.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from viewfinder.errors import DecodeError
from viewfinder.imaging.types import DecodedImage

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = ["CV2ImageCodec", "DEFAULT_JPEG_QUALITY", "ImageCodec", "load_luma"]

#: JPEG quality used for saved captures.
DEFAULT_JPEG_QUALITY = 95


@runtime_checkable
class ImageCodec(Protocol):
    """Protocol defining the decode and encode operations of the capture path.

    Example:
        >>> class FakeCodec:
        ...     def decode_file(self, path, ev_index=None):
        ...         return DecodedImage.from_array(np.zeros((2, 2, 3), np.uint8))
        ...     def encode_jpeg(self, pixels, quality=95):
        ...         return b'\xff\xd8test'
        >>> isinstance(FakeCodec(), ImageCodec)
        True
    """

    def decode_file(self, path: Path, ev_index: int | None = None) -> DecodedImage:
        """Decode an encoded still from disk.

        Business context: Each bracket shot is written to a staging file by
        the camera and decoded here before the staging file is deleted.

        Args:
            path: Encoded image (JPEG, PNG, ...).
            ev_index: Exposure index to record on the result.

        Returns:
            RGB DecodedImage.

        Raises:
            DecodeError: If the file is missing or cannot be decoded.
        """
        ...  # pragma: no cover

    def encode_jpeg(self, pixels: NDArray[Any], quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
        """Encode an RGB or RGBA raster as JPEG bytes.

        Args:
            pixels: ``(H, W, 3|4)`` uint8 array in RGB(A) order. Alpha is
                dropped.
            quality: JPEG quality 1-100.

        Returns:
            JPEG-encoded bytes starting with 0xFFD8.

        Raises:
            ValueError: If quality is not in 1-100 or encoding fails.
        """
        ...  # pragma: no cover


class CV2ImageCodec(ImageCodec):
    """OpenCV-based codec implementation.

    The cv2 import is deferred to ``__init__`` so modules that only
    reference the protocol never load OpenCV.

    Thread Safety:
        cv2 encode/decode functions are safe to call concurrently.
    """

    def __init__(self) -> None:
        """Initialize codec with lazy cv2 import.

        Raises:
            ImportError: If opencv-python-headless is not installed.
        """
        import cv2

        self._cv2 = cv2

    def decode_file(self, path: Path, ev_index: int | None = None) -> DecodedImage:
        """Decode ``path`` with ``cv2.imread`` and convert BGR to RGB.

        Args:
            path: Encoded image file.
            ev_index: Exposure index to record on the result.

        Returns:
            RGB DecodedImage.

        Raises:
            DecodeError: If OpenCV cannot read the file.
        """
        bgr = self._cv2.imread(str(path), self._cv2.IMREAD_COLOR)
        if bgr is None:
            raise DecodeError(f"cannot decode image file {path}")
        rgb = self._cv2.cvtColor(bgr, self._cv2.COLOR_BGR2RGB)
        return DecodedImage.from_array(rgb, ev_index=ev_index)

    def encode_jpeg(self, pixels: NDArray[Any], quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
        """Encode an RGB(A) raster with ``cv2.imencode``.

        Args:
            pixels: ``(H, W, 3|4)`` uint8 array in RGB(A) order.
            quality: JPEG quality 1-100.

        Returns:
            JPEG bytes.

        Raises:
            ValueError: If quality is out of range, the array has an
                unsupported shape, or encoding fails.
        """
        if not 1 <= quality <= 100:
            raise ValueError(f"quality must be 1-100, got {quality}")
        if pixels.ndim != 3 or pixels.shape[2] not in (3, 4):
            raise ValueError(f"expected (H, W, 3|4) pixels, got shape {pixels.shape}")
        code = (
            self._cv2.COLOR_RGBA2BGR if pixels.shape[2] == 4 else self._cv2.COLOR_RGB2BGR
        )
        bgr = self._cv2.cvtColor(pixels, code)
        success, data = self._cv2.imencode(
            ".jpg", bgr, [self._cv2.IMWRITE_JPEG_QUALITY, quality]
        )
        if not success:
            raise ValueError(
                f"JPEG encoding failed for image shape={pixels.shape}, dtype={pixels.dtype}"
            )
        return data.tobytes()


def load_luma(path: Path) -> NDArray[Any]:
    """Read an image file as a single-channel 8-bit luma array.

    Used by ``viewfinder analyze`` to run the live analyzers on a still.

    Args:
        path: Image file readable by OpenCV.

    Returns:
        ``(H, W)`` uint8 array.

    Raises:
        DecodeError: If the file cannot be read.
    """
    import cv2

    luma = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
    if luma is None:
        raise DecodeError(f"cannot decode image file {path}")
    return luma
