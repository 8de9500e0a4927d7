"""Capture modes and the capture pipeline.

Each ``CaptureMode`` selects a strategy that turns a capture request into
a saved still:

=========  ===========================  =======================================
Mode       Strategy                     Behaviour
=========  ===========================  =======================================
HDR        ``HdrBracketStrategy``       bracket, merge, tone map, save ``HDR_*``
SINGLE     ``SingleShotStrategy``       one still at current exposure, ``IMG_*``
AUTO       ``NotImplementedStrategy``   reports ``NOT_IMPLEMENTED``
NIGHT      ``NotImplementedStrategy``   reports ``NOT_IMPLEMENTED``
SR         ``NotImplementedStrategy``   reports ``NOT_IMPLEMENTED``
PORTRAIT   ``NotImplementedStrategy``   reports ``NOT_IMPLEMENTED``
=========  ===========================  =======================================

``CapturePipeline.capture()`` never raises for device or processing
problems: every request ends in a ``CaptureOutcome`` whose status tells the
UI what happened.

Example:
    pipeline = CapturePipeline(controller, camera, sink)
    outcome = pipeline.capture(CaptureMode.HDR)
    if outcome.status is CaptureStatus.SAVED:
        show_thumbnail(outcome.location)
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Protocol, runtime_checkable

from viewfinder.devices.bracket import BracketController, BracketSession, StillCapture
from viewfinder.devices.sink import JPEG_MIME_TYPE, CaptureSink
from viewfinder.errors import BracketCancelledError, CaptureFailedError, DecodeError
from viewfinder.imaging.merge import merge
from viewfinder.imaging.tonemap import ToneMapper
from viewfinder.observability import AnalysisStats, LogContext, get_logger
from viewfinder.utils.image import ImageCodec

logger = get_logger(__name__)

__all__ = [
    "CaptureContext",
    "CaptureMode",
    "CaptureOutcome",
    "CapturePipeline",
    "CaptureStatus",
    "CaptureStrategy",
    "HdrBracketStrategy",
    "NotImplementedStrategy",
    "SingleShotStrategy",
    "strategy_for",
    "timestamped_filename",
]


class CaptureMode(Enum):
    """User-selectable capture mode."""

    AUTO = "auto"
    HDR = "hdr"
    NIGHT = "night"
    SR = "sr"  # Super resolution
    PORTRAIT = "portrait"
    SINGLE = "single"


class CaptureStatus(Enum):
    """How a capture request ended."""

    SAVED = "saved"
    NO_IMAGES = "no_images"
    CANCELLED = "cancelled"
    FAILED = "failed"
    NOT_IMPLEMENTED = "not_implemented"


@dataclass(frozen=True, slots=True)
class CaptureOutcome:
    """Result of one capture request.

    Attributes:
        mode: Mode that was requested.
        status: How the request ended.
        location: Where the sink stored the image (SAVED only).
        filename: File name handed to the sink (SAVED only).
        shots_requested: Stills the strategy tried to take.
        shots_captured: Stills that were captured and decoded.
        error: Human readable reason for non-SAVED outcomes.
    """

    mode: CaptureMode
    status: CaptureStatus
    location: str | None = None
    filename: str | None = None
    shots_requested: int = 0
    shots_captured: int = 0
    error: str | None = None

    @property
    def saved(self) -> bool:
        """True if an image was persisted."""
        return self.status is CaptureStatus.SAVED

    def to_dict(self) -> dict[str, object]:
        """JSON-compatible representation."""
        return {
            "mode": self.mode.value,
            "status": self.status.value,
            "location": self.location,
            "filename": self.filename,
            "shots_requested": self.shots_requested,
            "shots_captured": self.shots_captured,
            "error": self.error,
        }


@dataclass(slots=True)
class CaptureContext:
    """Collaborators a strategy may use.

    Attributes:
        controller: Bracket controller for multi-exposure modes.
        camera: Still capture used by single-shot modes.
        codec: Decoder for staged stills.
        sink: Destination of finished images.
        tone_mapper: Tone mapper applied to merged images.
        now: Clock used for output file names.
    """

    controller: BracketController
    camera: StillCapture
    codec: ImageCodec
    sink: CaptureSink
    tone_mapper: ToneMapper = field(default_factory=ToneMapper)
    now: Callable[[], datetime] = datetime.now


def timestamped_filename(prefix: str, when: datetime, extension: str = ".jpg") -> str:
    """Build ``<prefix>_<yyyyMMdd_HHmmss><extension>``.

    Example:
        >>> timestamped_filename("HDR", datetime(2026, 3, 1, 7, 5, 9))
        'HDR_20260301_070509.jpg'
    """
    return f"{prefix}_{when:%Y%m%d_%H%M%S}{extension}"


@runtime_checkable
class CaptureStrategy(Protocol):
    """Capture-and-postprocess behaviour of one mode."""

    mode: CaptureMode

    def execute(self, context: CaptureContext, session: BracketSession) -> CaptureOutcome:
        """Run the capture inside ``session``.

        Raises:
            BracketCancelledError: If the session is cancelled.
        """
        ...  # pragma: no cover


class HdrBracketStrategy:
    """Bracket, merge, tone map, save."""

    mode = CaptureMode.HDR
    prefix = "HDR"

    def execute(self, context: CaptureContext, session: BracketSession) -> CaptureOutcome:
        """Run the HDR flow.

        Zero successful shots skip merge, tone mapping and the sink and end
        in ``NO_IMAGES``. Cancellation is checked once more before the sink
        so a cancelled request persists nothing.

        Args:
            context: Collaborators.
            session: Session owning staging files and the cancel flag.

        Returns:
            ``SAVED`` or ``NO_IMAGES`` outcome.

        Raises:
            BracketCancelledError: If the session is cancelled.
        """
        requested = len(context.controller.plan)
        images = context.controller.capture_bracket(session)
        if not images:
            logger.warning("No bracket shots succeeded, nothing to merge")
            return CaptureOutcome(
                mode=self.mode,
                status=CaptureStatus.NO_IMAGES,
                shots_requested=requested,
                error="no bracket shot could be captured",
            )

        merged = context.tone_mapper.apply(merge(images))
        session.raise_if_cancelled()

        filename = timestamped_filename(self.prefix, context.now())
        location = context.sink.save(merged, filename, JPEG_MIME_TYPE)
        return CaptureOutcome(
            mode=self.mode,
            status=CaptureStatus.SAVED,
            location=location,
            filename=filename,
            shots_requested=requested,
            shots_captured=len(images),
        )


class SingleShotStrategy:
    """One still at the current exposure, saved without processing."""

    mode = CaptureMode.SINGLE
    prefix = "IMG"

    def execute(self, context: CaptureContext, session: BracketSession) -> CaptureOutcome:
        """Capture, decode and save one still.

        Returns:
            ``SAVED``, or ``NO_IMAGES`` when the capture or decode fails.

        Raises:
            BracketCancelledError: If the session is cancelled.
        """
        session.raise_if_cancelled()
        path = session.staging_path()
        try:
            context.camera.capture_still(path)
            image = context.codec.decode_file(path)
        except (CaptureFailedError, DecodeError, OSError) as e:
            logger.warning("Single shot failed", error_type=type(e).__name__, error=str(e))
            return CaptureOutcome(
                mode=self.mode,
                status=CaptureStatus.NO_IMAGES,
                shots_requested=1,
                error=str(e),
            )
        finally:
            path.unlink(missing_ok=True)

        session.raise_if_cancelled()
        filename = timestamped_filename(self.prefix, context.now())
        location = context.sink.save(image, filename, JPEG_MIME_TYPE)
        return CaptureOutcome(
            mode=self.mode,
            status=CaptureStatus.SAVED,
            location=location,
            filename=filename,
            shots_requested=1,
            shots_captured=1,
        )


class NotImplementedStrategy:
    """Placeholder for modes that have no processing yet.

    Reports ``NOT_IMPLEMENTED`` without touching the camera, so an
    unsupported mode is never mistaken for a plain capture.
    """

    def __init__(self, mode: CaptureMode) -> None:
        self.mode = mode

    def execute(self, context: CaptureContext, session: BracketSession) -> CaptureOutcome:
        """Return a ``NOT_IMPLEMENTED`` outcome."""
        logger.info("Capture mode not implemented", mode=self.mode.value)
        return CaptureOutcome(
            mode=self.mode,
            status=CaptureStatus.NOT_IMPLEMENTED,
            error=f"capture mode {self.mode.value!r} is not implemented",
        )

    def __repr__(self) -> str:
        return f"NotImplementedStrategy({self.mode.name})"


def strategy_for(mode: CaptureMode) -> CaptureStrategy:
    """Return the strategy implementing ``mode``.

    Example:
        >>> strategy_for(CaptureMode.NIGHT)
        NotImplementedStrategy(NIGHT)
    """
    if mode is CaptureMode.HDR:
        return HdrBracketStrategy()
    if mode is CaptureMode.SINGLE:
        return SingleShotStrategy()
    return NotImplementedStrategy(mode)


class CapturePipeline:
    """Runs capture requests end to end.

    Every request gets its own ``BracketSession``, which is closed (staging
    files removed) before ``capture()`` returns. One request runs at a time;
    a concurrent call waits for the running one.

    Injectable Dependencies:
        - controller: Bracket controller (required)
        - camera: Still capture for single shots (required)
        - sink: Destination of saved images (required)
        - codec: Decoder for single shots (default: CV2ImageCodec)
        - tone_mapper: Tone mapper (default: ToneMapper())
        - stats: Outcome counters (optional)
        - now: Clock for file names (default: datetime.now)
    """

    def __init__(
        self,
        controller: BracketController,
        camera: StillCapture,
        sink: CaptureSink,
        codec: ImageCodec | None = None,
        tone_mapper: ToneMapper | None = None,
        stats: AnalysisStats | None = None,
        staging_root: Path | None = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        if codec is None:
            from viewfinder.utils.image import CV2ImageCodec

            codec = CV2ImageCodec()
        self._context = CaptureContext(
            controller=controller,
            camera=camera,
            codec=codec,
            sink=sink,
            tone_mapper=tone_mapper or ToneMapper(),
            now=now,
        )
        self._stats = stats
        self._staging_root = staging_root
        self._request_lock = threading.Lock()
        self._active: BracketSession | None = None

    @property
    def active_session(self) -> BracketSession | None:
        """Session of the request in progress, if any."""
        return self._active

    def cancel(self) -> bool:
        """Cancel the request in progress.

        Returns:
            True if a request was running and has been asked to stop.
        """
        session = self._active
        if session is None:
            return False
        session.cancel()
        return True

    def capture(self, mode: CaptureMode = CaptureMode.HDR) -> CaptureOutcome:
        """Run one capture request in ``mode``.

        Business context: Called when the shutter button is pressed. The UI
        only needs the outcome status to decide between a thumbnail, a
        "nothing captured" toast or an error message.

        Args:
            mode: Capture mode to run.

        Returns:
            CaptureOutcome. Device and processing errors become ``FAILED``,
            cancellation becomes ``CANCELLED``.
        """
        strategy = strategy_for(mode)
        with self._request_lock, LogContext(mode=mode.value):
            logger.info("Capture requested")
            try:
                with BracketSession(self._staging_root) as session:
                    self._active = session
                    outcome = strategy.execute(self._context, session)
            except BracketCancelledError as e:
                logger.info("Capture cancelled", reason=str(e))
                outcome = CaptureOutcome(mode=mode, status=CaptureStatus.CANCELLED, error=str(e))
            except Exception as e:
                logger.exception("Capture failed", error_type=type(e).__name__)
                outcome = CaptureOutcome(
                    mode=mode, status=CaptureStatus.FAILED, error=f"{type(e).__name__}: {e}"
                )
            finally:
                self._active = None

        if self._stats is not None:
            self._stats.record_capture(outcome.status.value)
        logger.info(
            "Capture finished",
            mode=mode.value,
            status=outcome.status.value,
            location=outcome.location,
        )
        return outcome
