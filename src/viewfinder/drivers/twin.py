"""Digital Twin Camera - Simulated Hardware for Development and Testing.

Provides a simulated camera that implements the three device-facing
protocols of the pipeline:

- ``ExposureActuator``: exposure compensation index with a configurable
  range, or no exposure compensation at all (``exposure_range=None``)
- ``StillCapture``: writes a JPEG of the synthetic scene to a given path
- Frame source: ``next_frame()`` / ``frames()`` yield luma frames of the
  same scene for the analysis worker

The scene is a horizontal gradient with a high-contrast checkerboard
patch, so zebra flags appear on the bright side and focus peaking on the
patch. Brightness follows the exposure index: each step scales linear
brightness by ``2 ** ev_step``.

Example:
    from viewfinder.drivers.twin import DigitalTwinCamera, DigitalTwinCameraConfig

    camera = DigitalTwinCamera(DigitalTwinCameraConfig(fail_indices={1}))
    camera.set_exposure_compensation_index(1)
    camera.capture_still(Path("/tmp/shot.jpg"))  # raises CaptureFailedError
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import cv2
import numpy as np

from viewfinder.analysis.frame import LumaFrame
from viewfinder.devices.exposure import ExposureRange
from viewfinder.errors import CaptureFailedError
from viewfinder.observability import get_logger

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_TWIN_RANGE",
    "DigitalTwinCamera",
    "DigitalTwinCameraConfig",
]

#: Exposure range reported by default (typical phone sensor: +-2 EV in 1/2 steps).
DEFAULT_TWIN_RANGE = ExposureRange(-4, 4)

# Synthetic scene geometry
_CHECKER_SIZE = 8
_PATCH_FRACTION = 0.25

# Rec. 601 luma weights, RGB order
_LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float32)


@dataclass
class DigitalTwinCameraConfig:
    """Configuration for digital twin camera behavior.

    Attributes:
        width: Sensor width in pixels.
        height: Sensor height in pixels.
        exposure_range: Supported exposure compensation range, or None to
            simulate a device without exposure compensation.
        ev_step: EV per exposure compensation step.
        fail_indices: Exposure indices at which ``capture_still`` fails.
        jpeg_quality: Quality of written stills.
        row_padding: Extra bytes at the end of every luma row, to exercise
            ``row_stride > width`` in consumers.
    """

    width: int = 320
    height: int = 240
    exposure_range: ExposureRange | None = DEFAULT_TWIN_RANGE
    ev_step: float = 0.5
    fail_indices: frozenset[int] | set[int] = field(default_factory=frozenset)
    jpeg_quality: int = 95
    row_padding: int = 0

    def __post_init__(self) -> None:
        """Validate geometry and freeze ``fail_indices``."""
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"invalid twin size {self.width}x{self.height}")
        if self.row_padding < 0:
            raise ValueError(f"row_padding must be >= 0, got {self.row_padding}")
        self.fail_indices = frozenset(self.fail_indices)


def _build_scene(width: int, height: int) -> NDArray[np.float32]:
    """Linear-light RGB scene in [0, 1] at neutral exposure."""
    x = np.linspace(0.0, 1.0, width, dtype=np.float32)
    scene = np.empty((height, width, 3), dtype=np.float32)
    # Warm-tinted horizontal gradient
    scene[..., 0] = x
    scene[..., 1] = x * 0.9
    scene[..., 2] = x * 0.8

    ph = max(1, int(height * _PATCH_FRACTION))
    pw = max(1, int(width * _PATCH_FRACTION))
    y0 = (height - ph) // 2
    x0 = max(0, width // 4 - pw // 2)
    yy, xx = np.mgrid[0:ph, 0:pw]
    checker = ((yy // _CHECKER_SIZE + xx // _CHECKER_SIZE) % 2).astype(np.float32)
    scene[y0 : y0 + ph, x0 : x0 + pw, :] = (0.1 + 0.6 * checker)[..., None]
    return scene


class DigitalTwinCamera:
    """Simulated camera with exposure compensation, stills and a preview.

    Thread Safety:
        Exposure state is guarded by a lock, so the analysis worker may pull
        frames while a bracket changes the exposure.

    Example:
        camera = DigitalTwinCamera()
        control = ExposureControl(camera)
        controller = BracketController(control, camera)
    """

    def __init__(self, config: DigitalTwinCameraConfig | None = None) -> None:
        """Create the twin and render its scene.

        Args:
            config: Behaviour settings. None uses defaults.
        """
        self._config = config or DigitalTwinCameraConfig()
        self._scene = _build_scene(self._config.width, self._config.height)
        self._index = 0
        self._lock = threading.Lock()
        self._exposure_history: list[int] = []
        self._capture_log: list[tuple[int, bool]] = []
        logger.debug("Digital twin camera initialized", config=repr(self._config))

    @property
    def config(self) -> DigitalTwinCameraConfig:
        """Behaviour settings."""
        return self._config

    @property
    def exposure_history(self) -> list[int]:
        """Every index commanded through the actuator, in order."""
        with self._lock:
            return list(self._exposure_history)

    @property
    def capture_log(self) -> list[tuple[int, bool]]:
        """``(exposure_index, succeeded)`` for every still requested."""
        with self._lock:
            return list(self._capture_log)

    # -- ExposureActuator ----------------------------------------------------

    def set_exposure_compensation_index(self, index: int) -> None:
        """Apply an exposure compensation index.

        Raises:
            ValueError: If the device has no exposure compensation or the
                index is outside the range.
        """
        exposure_range = self._config.exposure_range
        if exposure_range is None:
            raise ValueError("device does not support exposure compensation")
        if index not in exposure_range:
            raise ValueError(
                f"index {index} outside [{exposure_range.lower}, {exposure_range.upper}]"
            )
        with self._lock:
            self._index = index
            self._exposure_history.append(index)
        logger.debug("Exposure index set", ev_index=index)

    def exposure_range(self) -> ExposureRange | None:
        """Configured range, or None when exposure compensation is absent."""
        return self._config.exposure_range

    def exposure_index(self) -> int:
        """Index currently applied."""
        with self._lock:
            return self._index

    # -- StillCapture --------------------------------------------------------

    def capture_still(self, destination: Path) -> None:
        """Write a JPEG of the scene at the current exposure.

        Raises:
            CaptureFailedError: If the current index is in ``fail_indices``
                or encoding fails.
            OSError: If ``destination`` cannot be written.
        """
        with self._lock:
            index = self._index
            failed = index in self._config.fail_indices
            self._capture_log.append((index, not failed))
        if failed:
            raise CaptureFailedError(f"simulated capture failure at ev_index={index}")

        rgb = self.render_rgb(index)
        bgr = cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)
        ok, data = cv2.imencode(
            ".jpg", bgr, [cv2.IMWRITE_JPEG_QUALITY, self._config.jpeg_quality]
        )
        if not ok:
            raise CaptureFailedError(f"JPEG encoding failed at ev_index={index}")
        Path(destination).write_bytes(data.tobytes())
        logger.debug("Still captured", ev_index=index, path=str(destination))

    # -- Frame source --------------------------------------------------------

    def render_rgb(self, index: int | None = None) -> NDArray[np.uint8]:
        """Scene as 8-bit RGB at ``index`` (default: current index).

        Returns:
            ``(height, width, 3)`` uint8 array.
        """
        if index is None:
            index = self.exposure_index()
        gain = 2.0 ** (index * self._config.ev_step)
        return _to_uint8(self._scene * gain)

    def next_frame(self) -> LumaFrame:
        """Luma frame of the scene at the current exposure.

        With ``row_padding`` set, each row carries that many junk bytes
        after the last pixel.
        """
        rgb = self.render_rgb()
        luma = _to_uint8((rgb.astype(np.float32) / 255.0) @ _LUMA_WEIGHTS)
        padding = self._config.row_padding
        if padding == 0:
            return LumaFrame.from_array(luma)
        height, width = luma.shape
        padded = np.zeros((height, width + padding), dtype=np.uint8)
        padded[:, :width] = luma
        return LumaFrame(
            width=width,
            height=height,
            row_stride=width + padding,
            pixel_stride=1,
            data=padded.tobytes(),
        )

    def frames(self, count: int | None = None) -> Iterator[LumaFrame]:
        """Yield ``count`` preview frames, or frames forever if None."""
        produced = 0
        while count is None or produced < count:
            yield self.next_frame()
            produced += 1

    def __repr__(self) -> str:
        return (
            f"DigitalTwinCamera({self._config.width}x{self._config.height}, "
            f"range={self._config.exposure_range}, ev_index={self._index})"
        )


def _to_uint8(values: NDArray[Any]) -> NDArray[np.uint8]:
    """Scale [0, 1] floats to rounded, clipped uint8."""
    return np.clip(np.rint(values * 255.0), 0, 255).astype(np.uint8)
