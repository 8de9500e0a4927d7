"""Capture sink: where finished stills are persisted.

The pipeline hands the sink a tone-mapped raster plus a filename and mime
type; where and how it is stored is up to the sink.

Example:
    sink = DirectorySink(Path("~/Pictures/viewfinder").expanduser())
    location = sink.save(merged, "HDR_20260101_120000.jpg", "image/jpeg")
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from viewfinder.imaging.types import DecodedImage, MergedImage
from viewfinder.observability import get_logger
from viewfinder.utils.image import DEFAULT_JPEG_QUALITY, ImageCodec

logger = get_logger(__name__)

__all__ = ["JPEG_MIME_TYPE", "CaptureSink", "DirectorySink"]

JPEG_MIME_TYPE = "image/jpeg"


@runtime_checkable
class CaptureSink(Protocol):
    """Persists encoded stills."""

    def save(self, image: MergedImage | DecodedImage, filename: str, mime_type: str) -> str:
        """Store ``image`` and return where it went.

        Args:
            image: Final raster, RGB or RGBA.
            filename: Suggested file name including extension.
            mime_type: Requested encoding, e.g. ``"image/jpeg"``.

        Returns:
            Location of the stored image (path or URI).

        Raises:
            ValueError: If the mime type is not supported.
            OSError: If the image cannot be written.
        """
        ...  # pragma: no cover


class DirectorySink:
    """Writes JPEG files into one directory.

    The directory is created on first save. Existing files are never
    overwritten; a numeric suffix is added instead.
    """

    def __init__(
        self,
        directory: Path,
        codec: ImageCodec | None = None,
        quality: int = DEFAULT_JPEG_QUALITY,
    ) -> None:
        """Create a sink writing into ``directory``.

        Args:
            directory: Target directory.
            codec: JPEG encoder. Defaults to OpenCV.
            quality: JPEG quality 1-100.

        Raises:
            ValueError: If quality is outside 1-100.
        """
        if not 1 <= quality <= 100:
            raise ValueError(f"quality must be 1-100, got {quality}")
        if codec is None:
            from viewfinder.utils.image import CV2ImageCodec

            codec = CV2ImageCodec()
        self._directory = Path(directory)
        self._codec = codec
        self._quality = quality

    @property
    def directory(self) -> Path:
        """Target directory."""
        return self._directory

    def save(self, image: MergedImage | DecodedImage, filename: str, mime_type: str) -> str:
        """Encode ``image`` as JPEG and write it under ``filename``.

        Returns:
            Absolute path of the written file as a string.

        Raises:
            ValueError: If ``mime_type`` is not ``image/jpeg`` or the filename
                contains a directory part.
            OSError: If the directory or file cannot be written.
        """
        if mime_type != JPEG_MIME_TYPE:
            raise ValueError(f"unsupported mime type {mime_type!r}")
        if Path(filename).name != filename:
            raise ValueError(f"filename must not contain directories: {filename!r}")

        data = self._codec.encode_jpeg(image.pixels, quality=self._quality)
        self._directory.mkdir(parents=True, exist_ok=True)
        path = self._unique_path(filename)
        path.write_bytes(data)
        logger.info("Capture saved", path=str(path), bytes=len(data))
        return str(path.resolve())

    def _unique_path(self, filename: str) -> Path:
        """First non-existing path for ``filename`` in the directory."""
        candidate = self._directory / filename
        stem, suffix = candidate.stem, candidate.suffix
        counter = 1
        while candidate.exists():
            candidate = self._directory / f"{stem}_{counter}{suffix}"
            counter += 1
        return candidate
