"""Zebra (overexposure) and focus-peaking analyzer.

Splits the frame into a coarse ``grid_width x grid_height`` grid and, per
cell, derives

* the mean luma, flagged as zebra when it reaches ``zebra_threshold``;
* the mean Sobel gradient magnitude, used by the focus-peaking overlay.

Pixels inside each cell are sampled every second column and every second
row, starting at the cell origin.

Sobel kernels (neighbours clamped to the image bounds)::

    Gx = [[-1, 0, 1],      Gy = [[ 1,  2,  1],
          [-2, 0, 2],            [ 0,  0,  0],
          [-1, 0, 1]]            [-1, -2, -1]]

    magnitude = sqrt(Gx**2 + Gy**2)

Implementation: sample coordinates for each axis are laid out cell after
cell, so every cell owns a contiguous block of the sampled sub-image. Sums
per cell then come from a 2-D prefix sum, which also yields exact zeros for
degenerate cells that contain no samples.

Example:
    analyzer = ZebraPeakingAnalyzer()
    zebra, peaking = analyzer.compute(frame, grid_width=64, grid_height=36)
    hot_cells = zebra.cells.sum()
    sharp_cells = peaking.mask().sum()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NamedTuple

import numpy as np

from viewfinder.analysis.frame import MalformedFrameError
from viewfinder.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from viewfinder.analysis.frame import LumaFrame

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_PEAKING_THRESHOLD",
    "DEFAULT_ZEBRA_THRESHOLD",
    "SAMPLE_STEP",
    "AnalysisGrid",
    "GridAnalysis",
    "ZebraPeakingAnalyzer",
    "cell_bounds",
]

#: Mean luma at or above which a cell is flagged as overexposed.
DEFAULT_ZEBRA_THRESHOLD = 250

#: Mean gradient magnitude at or above which a cell counts as in focus.
DEFAULT_PEAKING_THRESHOLD = 24.0

#: Spatial subsampling step inside each cell, both axes.
SAMPLE_STEP = 2


@dataclass(frozen=True, eq=False, slots=True)
class AnalysisGrid:
    """Fixed-size row-major grid of per-cell results.

    Attributes:
        grid_width: Cells per row.
        grid_height: Cell rows.
        cells: ``(grid_height, grid_width)`` array; ``bool`` for zebra,
            ``float64`` for peaking magnitude.
        threshold: Threshold associated with the grid. For zebra it was
            already applied to produce the flags; for peaking it is the
            level used by ``mask()``.
    """

    grid_width: int
    grid_height: int
    cells: NDArray[Any]
    threshold: float

    @property
    def cell_count(self) -> int:
        """Number of cells, always ``grid_width * grid_height``."""
        return int(self.cells.size)

    def __getitem__(self, cell: tuple[int, int]) -> Any:
        """Return the value of cell ``(gx, gy)``."""
        gx, gy = cell
        return self.cells[gy, gx].item()

    def flat(self) -> list[Any]:
        """Row-major list of cell values (index ``gy * grid_width + gx``)."""
        return [v.item() for v in self.cells.ravel()]

    def mask(self) -> NDArray[np.bool_]:
        """Boolean mask of cells at or above ``threshold``.

        For zebra grids this is the flag array itself.

        Returns:
            ``(grid_height, grid_width)`` bool array.
        """
        if self.cells.dtype == np.bool_:
            return self.cells.copy()
        return self.cells >= self.threshold


class GridAnalysis(NamedTuple):
    """Pair of grids produced for one frame."""

    zebra: AnalysisGrid
    peaking: AnalysisGrid


def cell_bounds(index: int, cells: int, extent: int) -> tuple[int, int]:
    """Pixel range ``[start, end)`` covered by one cell along one axis.

    Cells are ``max(1, extent // cells)`` pixels wide; the last cell also
    absorbs the remainder, and every bound is clamped to the image.

    Args:
        index: Cell index along the axis, ``0 <= index < cells``.
        cells: Number of cells on the axis.
        extent: Image size on the axis in pixels.

    Returns:
        ``(start, end)`` with ``0 <= start <= end <= extent``.

    Example:
        >>> [cell_bounds(i, 3, 10) for i in range(3)]
        [(0, 3), (3, 6), (6, 10)]
        >>> cell_bounds(3, 4, 2)  # more cells than pixels
        (2, 2)
    """
    size = max(1, extent // cells)
    start = min(index * size, extent)
    end = extent if index == cells - 1 else min(extent, start + size)
    return start, end


def _axis_samples(cells: int, extent: int) -> tuple[NDArray[np.intp], NDArray[np.intp]]:
    """Sample coordinates along one axis and per-cell offsets into them.

    Returns:
        ``(coords, offsets)``: ``coords`` lists the sampled pixel positions
        cell by cell; ``offsets`` has ``cells + 1`` entries so cell ``g``
        owns ``coords[offsets[g]:offsets[g + 1]]``.
    """
    chunks = []
    offsets = np.zeros(cells + 1, dtype=np.intp)
    for g in range(cells):
        start, end = cell_bounds(g, cells, extent)
        chunk = np.arange(start, end, SAMPLE_STEP, dtype=np.intp)
        chunks.append(chunk)
        offsets[g + 1] = offsets[g] + chunk.size
    return np.concatenate(chunks), offsets


def _block_sums(
    values: NDArray[Any], row_offsets: NDArray[np.intp], col_offsets: NDArray[np.intp]
) -> NDArray[Any]:
    """Sum ``values`` over the blocks delimited by the offsets."""
    prefix = np.zeros((values.shape[0] + 1, values.shape[1] + 1), dtype=values.dtype)
    prefix[1:, 1:] = values.cumsum(axis=0).cumsum(axis=1)
    r0, r1 = row_offsets[:-1, None], row_offsets[1:, None]
    c0, c1 = col_offsets[None, :-1], col_offsets[None, 1:]
    return prefix[r1, c1] - prefix[r0, c1] - prefix[r1, c0] + prefix[r0, c0]


def _sobel_magnitude(
    plane: NDArray[np.uint8], ys: NDArray[np.intp], xs: NDArray[np.intp]
) -> NDArray[np.float64]:
    """Sobel gradient magnitude at the sampled positions ``ys x xs``.

    Neighbour coordinates are clamped into the image, so border pixels reuse
    the nearest row or column instead of wrapping or zero padding.
    """
    height, width = plane.shape
    up = np.clip(ys - 1, 0, height - 1)[:, None]
    mid_y = ys[:, None]
    down = np.clip(ys + 1, 0, height - 1)[:, None]
    left = np.clip(xs - 1, 0, width - 1)[None, :]
    mid_x = xs[None, :]
    right = np.clip(xs + 1, 0, width - 1)[None, :]

    src = plane.astype(np.int32)
    tl, tc, tr = src[up, left], src[up, mid_x], src[up, right]
    ml, mr = src[mid_y, left], src[mid_y, right]
    bl, bc, br = src[down, left], src[down, mid_x], src[down, right]

    gx = (tr - tl) + 2 * (mr - ml) + (br - bl)
    gy = (tl + 2 * tc + tr) - (bl + 2 * bc + br)
    return np.sqrt((gx * gx + gy * gy).astype(np.float64))


class ZebraPeakingAnalyzer:
    """Computes zebra flags and peaking magnitudes on a coarse grid.

    Stateless: each call allocates and fully assigns fresh grids, so no cell
    can ever hold a value from a previous frame.

    Example:
        >>> analyzer = ZebraPeakingAnalyzer()
        >>> result = analyzer.compute(frame, 2, 2, zebra_threshold=250)
        >>> result.zebra.flat()
        [True, False, False, False]
    """

    def compute(
        self,
        frame: LumaFrame,
        grid_width: int,
        grid_height: int,
        zebra_threshold: int = DEFAULT_ZEBRA_THRESHOLD,
        peaking_threshold: float = DEFAULT_PEAKING_THRESHOLD,
    ) -> GridAnalysis:
        """Analyse one frame.

        Per cell: ``mean = luma_sum // samples`` (0 for a cell without
        samples), ``zebra = mean >= zebra_threshold`` and
        ``peaking = gradient_sum / max(1, samples)``.

        Business context: Drives the zebra stripes and green peaking tint
        of the viewfinder. Both thresholds are caller-tunable so the UI can
        expose "zebra at 95%" style settings.

        Args:
            frame: Frame to analyse. Not retained.
            grid_width: Cells per row, must be positive.
            grid_height: Cell rows, must be positive.
            zebra_threshold: Mean luma (0-255) that flags a cell.
            peaking_threshold: Magnitude stored on the peaking grid for
                ``mask()``; does not alter the magnitudes.

        Returns:
            ``GridAnalysis(zebra, peaking)``; unpacks as a 2-tuple. Malformed
            frames give all-False / all-zero grids of the requested size.

        Raises:
            ValueError: If a grid dimension is not positive. This is a caller
                bug rather than a bad frame.
        """
        if grid_width <= 0 or grid_height <= 0:
            raise ValueError(
                f"grid dimensions must be positive, got {grid_width}x{grid_height}"
            )

        try:
            plane = frame.plane()
        except MalformedFrameError as e:
            if not frame.is_empty:
                logger.warning("Malformed frame, returning empty grids", error=str(e))
            return self._empty(grid_width, grid_height, zebra_threshold, peaking_threshold)

        xs, col_offsets = _axis_samples(grid_width, frame.width)
        ys, row_offsets = _axis_samples(grid_height, frame.height)

        luma = plane[np.ix_(ys, xs)].astype(np.int64)
        magnitude = _sobel_magnitude(plane, ys, xs)

        luma_sums = _block_sums(luma, row_offsets, col_offsets)
        grad_sums = _block_sums(magnitude, row_offsets, col_offsets)
        counts = np.diff(row_offsets)[:, None] * np.diff(col_offsets)[None, :]

        means = np.floor_divide(luma_sums, np.maximum(counts, 1))
        zebra_cells = means >= zebra_threshold
        peaking_cells = grad_sums / np.maximum(counts, 1)

        return GridAnalysis(
            zebra=AnalysisGrid(grid_width, grid_height, zebra_cells, float(zebra_threshold)),
            peaking=AnalysisGrid(
                grid_width, grid_height, peaking_cells, float(peaking_threshold)
            ),
        )

    @staticmethod
    def _empty(
        grid_width: int, grid_height: int, zebra_threshold: int, peaking_threshold: float
    ) -> GridAnalysis:
        """All-False / all-zero grids for frames that cannot be read."""
        shape = (grid_height, grid_width)
        return GridAnalysis(
            zebra=AnalysisGrid(
                grid_width, grid_height, np.zeros(shape, dtype=np.bool_), float(zebra_threshold)
            ),
            peaking=AnalysisGrid(
                grid_width,
                grid_height,
                np.zeros(shape, dtype=np.float64),
                float(peaking_threshold),
            ),
        )
