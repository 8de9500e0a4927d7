"""Read-only view of one camera frame's luma plane.

A ``LumaFrame`` describes the Y plane handed over by the frame source:
geometry, row and pixel strides, and the raw bytes. Analyzers borrow it for
the duration of one call and never keep a reference.

Example:
    frame = LumaFrame(
        width=640, height=480, row_stride=640, pixel_stride=1, data=y_bytes
    )
    plane = frame.plane()  # (480, 640) uint8 view, no copy for packed frames
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = ["LumaFrame", "MalformedFrameError"]


class MalformedFrameError(ValueError):
    """Raised by ``LumaFrame.plane()`` when the bytes cannot hold the geometry."""


@dataclass(frozen=True, slots=True)
class LumaFrame:
    """One luma plane with stride metadata.

    Pixel ``(x, y)`` is the byte at ``y * row_stride + x * pixel_stride``.
    Sources are expected to honour ``len(data) >= row_stride * height``;
    frames that do not are treated as malformed by the analyzers.

    Attributes:
        width: Pixels per row.
        height: Number of rows.
        row_stride: Bytes between the starts of consecutive rows.
        pixel_stride: Bytes between horizontally adjacent pixels.
        data: Plane bytes (``bytes``, ``bytearray`` or ``memoryview``).
    """

    width: int
    height: int
    row_stride: int
    pixel_stride: int
    data: bytes | bytearray | memoryview

    @classmethod
    def from_array(cls, luma: NDArray[Any]) -> LumaFrame:
        """Build a tightly packed frame from a 2-D array.

        Business context: Lets tests, the CLI and the digital twin produce
        frames from numpy images without hand-computing strides.

        Args:
            luma: 2-D array of luma values. Converted to ``uint8``.

        Returns:
            Frame with ``row_stride == width`` and ``pixel_stride == 1``.

        Raises:
            ValueError: If the array is not two-dimensional.

        Example:
            >>> frame = LumaFrame.from_array(np.full((8, 8), 255, np.uint8))
            >>> frame.width, frame.row_stride
            (8, 8)
        """
        arr = np.asarray(luma)
        if arr.ndim != 2:
            raise ValueError(f"luma array must be 2-D, got shape {arr.shape}")
        packed = np.ascontiguousarray(arr, dtype=np.uint8)
        height, width = packed.shape
        return cls(
            width=width,
            height=height,
            row_stride=width,
            pixel_stride=1,
            data=packed.tobytes(),
        )

    @property
    def is_empty(self) -> bool:
        """True when the frame has no pixels or no bytes."""
        return self.width <= 0 or self.height <= 0 or len(self.data) == 0

    def buffer(self) -> NDArray[np.uint8]:
        """Return the plane bytes as a flat ``uint8`` array without copying."""
        return np.frombuffer(self.data, dtype=np.uint8)

    def plane(self) -> NDArray[np.uint8]:
        """Return pixels as a ``(height, width)`` strided view.

        The view addresses exactly ``y * row_stride + x * pixel_stride`` for
        every pixel, so no bytes are copied even for padded or interleaved
        planes.

        Returns:
            Read-only ``(height, width)`` ``uint8`` array.

        Raises:
            MalformedFrameError: If the frame is empty, a stride is not
                positive, the data is shorter than ``row_stride * height``
                or the last pixel lies beyond the data.

        Example:
            >>> frame = LumaFrame(2, 2, row_stride=4, pixel_stride=2,
            ...                   data=bytes([1, 0, 2, 0, 3, 0, 4, 0]))
            >>> frame.plane().tolist()
            [[1, 2], [3, 4]]
        """
        if self.is_empty:
            raise MalformedFrameError("frame has no pixel data")
        if self.row_stride <= 0 or self.pixel_stride <= 0:
            raise MalformedFrameError(
                f"strides must be positive, got row_stride={self.row_stride} "
                f"pixel_stride={self.pixel_stride}"
            )
        buf = self.buffer()
        if buf.size < self.row_stride * self.height:
            raise MalformedFrameError(
                f"{buf.size} bytes are fewer than row_stride={self.row_stride} "
                f"x height={self.height}"
            )
        last_offset = (self.height - 1) * self.row_stride + (
            self.width - 1
        ) * self.pixel_stride
        if last_offset >= buf.size:
            raise MalformedFrameError(
                f"{buf.size} bytes cannot hold {self.width}x{self.height} "
                f"with row_stride={self.row_stride} pixel_stride={self.pixel_stride}"
            )
        view = np.lib.stride_tricks.as_strided(
            buf,
            shape=(self.height, self.width),
            strides=(self.row_stride, self.pixel_stride),
            writeable=False,
        )
        return view

    def __repr__(self) -> str:
        """Summarise geometry without dumping the bytes."""
        return (
            f"LumaFrame({self.width}x{self.height}, row_stride={self.row_stride}, "
            f"pixel_stride={self.pixel_stride}, bytes={len(self.data)})"
        )
