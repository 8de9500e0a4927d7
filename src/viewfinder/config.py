"""Pipeline configuration and factory.

One ``ViewfinderConfig`` holds every tunable of the pipeline; a
``PipelineFactory`` turns it into wired-up analyzers, workers, bracket
controllers and capture pipelines. A process-wide factory is available
through ``get_factory()`` for applications that configure once at startup.

Example:
    from viewfinder.config import ViewfinderConfig, configure, get_factory

    configure(ViewfinderConfig(zebra_threshold=245, output_dir=Path("/sdcard/DCIM")))
    factory = get_factory()
    camera = factory.create_camera()
    pipeline = factory.create_pipeline(camera)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from viewfinder.analysis.histogram import HistogramAnalyzer
from viewfinder.analysis.worker import FrameAnalysis, FrameAnalysisWorker
from viewfinder.analysis.zebra import ZebraPeakingAnalyzer
from viewfinder.devices.bracket import (
    DEFAULT_BRACKET_OFFSETS,
    BracketController,
    BracketPlan,
)
from viewfinder.devices.capture import CaptureMode, CapturePipeline
from viewfinder.devices.exposure import ExposureControl
from viewfinder.devices.sink import CaptureSink, DirectorySink
from viewfinder.drivers.twin import DigitalTwinCamera, DigitalTwinCameraConfig
from viewfinder.imaging.tonemap import DEFAULT_STEEPNESS, ToneMapper
from viewfinder.observability import AnalysisStats
from viewfinder.utils.image import DEFAULT_JPEG_QUALITY, ImageCodec

__all__ = [
    "DEFAULT_GRID_HEIGHT",
    "DEFAULT_GRID_WIDTH",
    "PipelineFactory",
    "ViewfinderConfig",
    "configure",
    "get_config",
    "get_factory",
    "reset_config",
]

# =============================================================================
# Constants
# =============================================================================

DEFAULT_GRID_WIDTH = 64
DEFAULT_GRID_HEIGHT = 36


def _default_output_dir() -> Path:
    """Return ``~/.viewfinder/captures``, the default save location.

    Returns:
        Path, which may not exist yet (created on first save).
    """
    return Path.home() / ".viewfinder" / "captures"


@dataclass
class ViewfinderConfig:
    """Configuration for analysis and capture.

    Attributes:
        grid_width: Zebra/peaking grid cells per row.
        grid_height: Zebra/peaking grid rows.
        zebra_threshold: Mean luma (0-255) that flags a cell.
        peaking_threshold: Mean gradient magnitude that marks a cell sharp.
        bracket_offsets: EV steps relative to neutral, one shot each.
        neutral_index: Exposure index restored after a bracket.
        tone_steepness: Gain of the tone-mapping sigmoid.
        jpeg_quality: Quality of saved JPEGs (1-100).
        output_dir: Directory saved captures go to.
        staging_dir: Parent of bracket staging directories (None = system
            temp directory).
        default_mode: Mode used when a capture request names none.
        stats_window: Frame timings kept for duration statistics.
    """

    # Live analysis
    grid_width: int = DEFAULT_GRID_WIDTH
    grid_height: int = DEFAULT_GRID_HEIGHT
    zebra_threshold: int = 250
    peaking_threshold: float = 24.0

    # Bracket / capture
    bracket_offsets: tuple[int, ...] = DEFAULT_BRACKET_OFFSETS
    neutral_index: int = 0
    tone_steepness: float = DEFAULT_STEEPNESS
    jpeg_quality: int = DEFAULT_JPEG_QUALITY
    output_dir: Path = field(default_factory=_default_output_dir)
    staging_dir: Path | None = None
    default_mode: CaptureMode = CaptureMode.HDR

    # Observability
    stats_window: int = 1000

    def __post_init__(self) -> None:
        """Normalise types and reject out-of-range values.

        Raises:
            ValueError: On the first invalid field.
        """
        self.bracket_offsets = tuple(int(o) for o in self.bracket_offsets)
        self.output_dir = Path(self.output_dir).expanduser()
        if self.staging_dir is not None:
            self.staging_dir = Path(self.staging_dir).expanduser()
        if isinstance(self.default_mode, str):
            self.default_mode = CaptureMode(self.default_mode)

        if self.grid_width <= 0 or self.grid_height <= 0:
            raise ValueError(
                f"grid must be positive, got {self.grid_width}x{self.grid_height}"
            )
        if not 0 <= self.zebra_threshold <= 255:
            raise ValueError(f"zebra_threshold must be 0-255, got {self.zebra_threshold}")
        if self.peaking_threshold < 0:
            raise ValueError(
                f"peaking_threshold must be >= 0, got {self.peaking_threshold}"
            )
        if not self.bracket_offsets:
            raise ValueError("bracket_offsets must not be empty")
        if self.tone_steepness <= 0:
            raise ValueError(f"tone_steepness must be positive, got {self.tone_steepness}")
        if not 1 <= self.jpeg_quality <= 100:
            raise ValueError(f"jpeg_quality must be 1-100, got {self.jpeg_quality}")
        if self.stats_window <= 0:
            raise ValueError(f"stats_window must be positive, got {self.stats_window}")

    def with_overrides(self, **changes: Any) -> ViewfinderConfig:
        """Copy of this config with some fields replaced (re-validated)."""
        return replace(self, **changes)


class PipelineFactory:
    """Builds pipeline components from a ``ViewfinderConfig``.

    Thread Safety:
        Not thread-safe. Configure once at startup, then create components.
    """

    def __init__(self, config: ViewfinderConfig | None = None) -> None:
        """Store ``config`` (default: all defaults)."""
        self.config = config or ViewfinderConfig()

    def create_stats(self) -> AnalysisStats:
        """Fresh statistics collector sized by ``stats_window``."""
        return AnalysisStats(window_size=self.config.stats_window)

    def create_worker(
        self,
        stats: AnalysisStats | None = None,
        on_result: Callable[[FrameAnalysis], None] | None = None,
    ) -> FrameAnalysisWorker:
        """Analysis worker with the configured grid and thresholds.

        Args:
            stats: Collector to record into (default: new one).
            on_result: Called with every analysis snapshot.

        Returns:
            Stopped FrameAnalysisWorker.
        """
        cfg = self.config
        return FrameAnalysisWorker(
            grid_width=cfg.grid_width,
            grid_height=cfg.grid_height,
            zebra_threshold=cfg.zebra_threshold,
            peaking_threshold=cfg.peaking_threshold,
            histogram=HistogramAnalyzer(),
            grid_analyzer=ZebraPeakingAnalyzer(),
            stats=stats or self.create_stats(),
            on_result=on_result,
        )

    def create_camera(
        self, twin_config: DigitalTwinCameraConfig | None = None
    ) -> DigitalTwinCamera:
        """Digital twin camera for development and tests."""
        return DigitalTwinCamera(twin_config)

    def create_controller(
        self,
        camera: DigitalTwinCamera,
        control: ExposureControl | None = None,
        codec: ImageCodec | None = None,
    ) -> BracketController:
        """Bracket controller for ``camera``.

        Args:
            camera: Device acting as both actuator and still capture.
            control: Exposure control to share with the viewfinder (default:
                new one around ``camera``).
            codec: Still decoder (default: OpenCV).
        """
        return BracketController(
            control or ExposureControl(camera),
            camera,
            codec=codec,
            plan=BracketPlan(self.config.bracket_offsets),
            neutral_index=self.config.neutral_index,
        )

    def create_sink(self, codec: ImageCodec | None = None) -> CaptureSink:
        """Directory sink writing into ``output_dir``."""
        return DirectorySink(self.config.output_dir, codec=codec, quality=self.config.jpeg_quality)

    def create_pipeline(
        self,
        camera: DigitalTwinCamera,
        control: ExposureControl | None = None,
        sink: CaptureSink | None = None,
        stats: AnalysisStats | None = None,
        codec: ImageCodec | None = None,
    ) -> CapturePipeline:
        """Complete capture pipeline around ``camera``.

        Args:
            camera: Device to shoot with.
            control: Shared exposure control (default: new one).
            sink: Output sink (default: ``create_sink()``).
            stats: Collector for outcome counters.
            codec: Codec used for decoding and encoding (default: OpenCV).

        Returns:
            Ready CapturePipeline.
        """
        if codec is None:
            from viewfinder.utils.image import CV2ImageCodec

            codec = CV2ImageCodec()
        return CapturePipeline(
            self.create_controller(camera, control=control, codec=codec),
            camera,
            sink or self.create_sink(codec=codec),
            codec=codec,
            tone_mapper=ToneMapper(self.config.tone_steepness),
            stats=stats,
            staging_root=self.config.staging_dir,
        )


# =============================================================================
# Global Singleton
# =============================================================================
# Not thread-safe: configure once at startup before starting worker threads.

_factory: PipelineFactory | None = None


def get_factory() -> PipelineFactory:
    """Return the process-wide factory, creating a default one on first use."""
    global _factory
    if _factory is None:
        _factory = PipelineFactory()
    return _factory


def get_config() -> ViewfinderConfig:
    """Return the configuration of the process-wide factory."""
    return get_factory().config


def configure(config: ViewfinderConfig) -> None:
    """Replace the process-wide factory with one using ``config``.

    Components already created keep the settings they were built with.

    Example:
        >>> configure(ViewfinderConfig(grid_width=32, grid_height=18))
        >>> get_config().grid_width
        32
    """
    global _factory
    _factory = PipelineFactory(config)


def reset_config() -> None:
    """Drop the process-wide factory so the next access uses defaults."""
    global _factory
    _factory = None

