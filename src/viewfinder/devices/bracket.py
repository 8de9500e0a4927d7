"""Exposure bracket controller.

Drives the exposure actuator through a short EV sequence, fires one still
per step and decodes each shot. Failed shots are dropped, the neutral
exposure is always restored, and every staging file is removed whether
decoding worked or not.

Sequence for the default plan against a device range of ``[-1, 1]``::

    set(-1) -> capture -> decode
    set( 0) -> capture -> decode
    set(+1) -> capture -> decode      (-2, 0, +2 clamped independently)
    set( 0)                           (restore, always)

Example:
    controller = BracketController(ExposureControl(camera), camera)
    with BracketSession() as session:
        images = controller.capture_bracket(session)
"""

from __future__ import annotations

import shutil
import tempfile
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Protocol, runtime_checkable

from viewfinder.devices.exposure import ExposureActuator, ExposureControl, ExposureRange
from viewfinder.errors import BracketCancelledError, CaptureFailedError, DecodeError
from viewfinder.imaging.types import DecodedImage
from viewfinder.observability import LogContext, get_logger
from viewfinder.utils.image import ImageCodec

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_BRACKET_OFFSETS",
    "BracketController",
    "BracketPlan",
    "BracketSession",
    "StillCapture",
]

#: EV steps relative to neutral for a three-shot bracket.
DEFAULT_BRACKET_OFFSETS: tuple[int, ...] = (-2, 0, 2)

_STAGING_PREFIX = "viewfinder-bracket-"


@runtime_checkable
class StillCapture(Protocol):
    """Single-shot still capture into a file."""

    def capture_still(self, destination: Path) -> None:
        """Capture one still at the exposure currently applied.

        Args:
            destination: File to write the encoded still to. The caller owns
                and deletes it.

        Raises:
            CaptureFailedError: If the device reports a failed capture.
            OSError: If the file cannot be written.
        """
        ...  # pragma: no cover


@dataclass(frozen=True, slots=True)
class BracketPlan:
    """Ordered EV offsets relative to the neutral index.

    Attributes:
        offsets: Steps added to the neutral index, one shot each.
    """

    offsets: tuple[int, ...] = DEFAULT_BRACKET_OFFSETS

    def __post_init__(self) -> None:
        """Require at least one shot."""
        if not self.offsets:
            raise ValueError("bracket plan needs at least one offset")

    def __len__(self) -> int:
        return len(self.offsets)

    def targets(self, exposure_range: ExposureRange, neutral: int) -> list[int]:
        """Clamp ``neutral + offset`` for every offset.

        ``neutral`` is the unclamped neutral index. Each target is clamped on
        its own, so a narrow range can yield repeated targets. They are kept
        as-is.

        Example:
            >>> BracketPlan().targets(ExposureRange(-1, 1), 0)
            [-1, 0, 1]
            >>> BracketPlan().targets(ExposureRange(0, 0), 0)
            [0, 0, 0]
            >>> BracketPlan().targets(ExposureRange(1, 3), 0)
            [1, 1, 2]
        """
        return [exposure_range.clamp(neutral + offset) for offset in self.offsets]


class BracketSession:
    """Owns the staging area and cancel flag of one bracket operation.

    A session is created per capture request and closed when the request
    ends. Closing removes the staging directory and everything in it, so a
    cancelled or failed bracket leaves no files behind.

    Thread Safety:
        ``cancel()`` may be called from any thread; the bracket checks the
        flag between shots.

    Example:
        with BracketSession() as session:
            ui.on_back_pressed = session.cancel
            images = controller.capture_bracket(session)
    """

    def __init__(self, staging_root: Path | None = None) -> None:
        """Create the session's private staging directory.

        Args:
            staging_root: Parent directory for staging files. None uses the
                system temp directory.

        Raises:
            OSError: If the staging directory cannot be created.
        """
        self.session_id = uuid.uuid4().hex[:8]
        if staging_root is not None:
            staging_root.mkdir(parents=True, exist_ok=True)
        self._staging_dir = Path(
            tempfile.mkdtemp(prefix=_STAGING_PREFIX, dir=staging_root)
        )
        self._cancelled = threading.Event()
        self._closed = False
        self._shot_counter = 0

    @property
    def staging_dir(self) -> Path:
        """Directory holding this session's staging files."""
        return self._staging_dir

    @property
    def cancelled(self) -> bool:
        """True once ``cancel()`` has been called."""
        return self._cancelled.is_set()

    @property
    def closed(self) -> bool:
        """True once ``close()`` has run."""
        return self._closed

    def cancel(self) -> None:
        """Ask the bracket to stop before its next shot."""
        if not self._cancelled.is_set():
            logger.info("Bracket session cancelled", session=self.session_id)
        self._cancelled.set()

    def raise_if_cancelled(self) -> None:
        """Raise ``BracketCancelledError`` if the session was cancelled."""
        if self._cancelled.is_set():
            raise BracketCancelledError(f"bracket session {self.session_id} cancelled")

    def staging_path(self) -> Path:
        """Return a fresh, unused file path inside the staging directory.

        Raises:
            RuntimeError: If the session is closed.
        """
        if self._closed:
            raise RuntimeError(f"bracket session {self.session_id} is closed")
        path = self._staging_dir / f"cap_{self._shot_counter}.jpg"
        self._shot_counter += 1
        return path

    def close(self) -> None:
        """Remove the staging directory. Idempotent."""
        if self._closed:
            return
        self._closed = True
        shutil.rmtree(self._staging_dir, ignore_errors=True)
        logger.debug("Bracket session closed", session=self.session_id)

    def __enter__(self) -> BracketSession:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"BracketSession(id={self.session_id}, cancelled={self.cancelled}, "
            f"closed={self._closed})"
        )


class BracketController:
    """Runs exposure brackets against one camera.

    Injectable Dependencies:
        - control: Exclusive wrapper around the exposure actuator (required)
        - camera: Still capture into a file (required)
        - codec: Decoder for staged stills (default: CV2ImageCodec)
        - plan: EV offsets (default: -2, 0, +2)
    """

    def __init__(
        self,
        control: ExposureControl,
        camera: StillCapture,
        codec: ImageCodec | None = None,
        plan: BracketPlan | None = None,
        neutral_index: int = 0,
    ) -> None:
        """Create a controller.

        Args:
            control: Exposure control shared with the live viewfinder.
            camera: Device that writes stills to a given path.
            codec: Decoder for staged stills. Defaults to OpenCV.
            plan: Offsets to shoot.
            neutral_index: Index the offsets are added to before clamping.
                Its clamped value is restored afterwards.
        """
        if codec is None:
            from viewfinder.utils.image import CV2ImageCodec

            codec = CV2ImageCodec()
        self._control = control
        self._camera = camera
        self._codec = codec
        self._plan = plan or BracketPlan()
        self._neutral_index = neutral_index

    @property
    def plan(self) -> BracketPlan:
        """Offsets shot by ``capture_bracket()``."""
        return self._plan

    def capture_bracket(self, session: BracketSession) -> list[DecodedImage]:
        """Shoot the bracket and return the shots that decoded.

        Holds the exposure control for the whole sequence. For each offset
        the clamped target is applied, one still is captured into a staging
        file and decoded, and the staging file is deleted. Shots whose
        capture or decode fails are logged and dropped; there is no retry.
        The clamped neutral index is restored in every case.

        If the device reports no exposure range, no actuator commands are
        sent at all and every shot is taken at the current exposure.

        Business context: Produces the inputs of the HDR merge. Restoring
        neutral keeps the live preview correctly exposed once the bracket
        is over, even after a failure midway.

        Args:
            session: Session owning the staging area and cancel flag.

        Returns:
            Decoded shots in plan order; may be shorter than the plan or
            empty.

        Raises:
            BracketCancelledError: If the session was cancelled before or
                during the bracket. Already decoded shots are discarded.
            ExposureControlBusyError: Never in the default blocking mode;
                listed for callers passing a control with a held lock.
            RuntimeError: If ``session`` is already closed.

        Example:
            >>> with BracketSession() as session:
            ...     images = controller.capture_bracket(session)
            >>> [img.ev_index for img in images]
            [-1, 0, 1]
        """
        if session.closed:
            raise RuntimeError(f"bracket session {session.session_id} is closed")
        session.raise_if_cancelled()

        images: list[DecodedImage] = []
        with LogContext(bracket=session.session_id), self._control.exclusive() as actuator:
            exposure_range = actuator.exposure_range()
            if exposure_range is None:
                logger.info("Device has no exposure compensation, shooting at current EV")
                neutral = 0
                targets: list[int | None] = [None] * len(self._plan)
            else:
                neutral = exposure_range.clamp(self._neutral_index)
                targets = list(self._plan.targets(exposure_range, self._neutral_index))

            logger.info("Bracket started", targets=targets, neutral=neutral)
            try:
                for target in targets:
                    session.raise_if_cancelled()
                    if target is not None:
                        actuator.set_exposure_compensation_index(target)
                    image = self._shoot(session, target)
                    if image is not None:
                        images.append(image)
                session.raise_if_cancelled()
            finally:
                if exposure_range is not None:
                    self._restore(actuator, neutral)

        logger.info(
            "Bracket finished",
            requested=len(targets),
            captured=len(images),
            session=session.session_id,
        )
        return images

    def _shoot(self, session: BracketSession, target: int | None) -> DecodedImage | None:
        """Capture and decode one shot; None if it failed."""
        path = session.staging_path()
        try:
            self._camera.capture_still(path)
            return self._codec.decode_file(path, ev_index=target)
        except (CaptureFailedError, DecodeError, OSError) as e:
            logger.warning(
                "Bracket shot failed, dropping it",
                ev_index=target,
                error_type=type(e).__name__,
                error=str(e),
            )
            return None
        finally:
            path.unlink(missing_ok=True)

    @staticmethod
    def _restore(actuator: ExposureActuator, neutral: int) -> None:
        """Put the device back on the neutral index."""
        try:
            actuator.set_exposure_compensation_index(neutral)
        except Exception:
            logger.exception("Failed to restore neutral exposure", neutral=neutral)
            raise
        logger.debug("Exposure restored", ev_index=neutral)
