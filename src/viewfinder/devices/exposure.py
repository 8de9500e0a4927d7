"""Exposure-compensation actuator protocol and exclusive control.

The actuator is the one device shared between the live viewfinder (ad-hoc
EV changes from the UI) and the bracket flow. ``ExposureControl`` wraps it
with a lock so that a bracket owns the device for its whole sequence while
UI requests are refused instead of interleaving with the shots.

Example:
    control = ExposureControl(camera)

    control.set_index(1)  # UI nudge, True when applied

    with control.exclusive() as actuator:
        actuator.set_exposure_compensation_index(-2)
        ...
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from viewfinder.errors import ExposureControlBusyError
from viewfinder.observability import get_logger

logger = get_logger(__name__)

__all__ = [
    "ExposureActuator",
    "ExposureControl",
    "ExposureRange",
]


@dataclass(frozen=True, slots=True)
class ExposureRange:
    """Inclusive range of exposure compensation steps a device supports.

    ``lower <= 0 <= upper`` is typical but not guaranteed; always read the
    range from the device.

    Attributes:
        lower: Lowest supported index.
        upper: Highest supported index.
    """

    lower: int
    upper: int

    def __post_init__(self) -> None:
        """Reject inverted ranges."""
        if self.lower > self.upper:
            raise ValueError(f"invalid exposure range [{self.lower}, {self.upper}]")

    def clamp(self, index: int) -> int:
        """Return ``index`` limited to ``[lower, upper]``.

        Example:
            >>> ExposureRange(-1, 1).clamp(-2)
            -1
        """
        return max(self.lower, min(self.upper, index))

    def __contains__(self, index: object) -> bool:
        """True if ``index`` is an int inside the range."""
        return isinstance(index, int) and self.lower <= index <= self.upper


@runtime_checkable
class ExposureActuator(Protocol):
    """Device-side exposure compensation control.

    Implemented by camera bindings and by ``DigitalTwinCamera``.
    """

    def set_exposure_compensation_index(self, index: int) -> None:
        """Command the device to an exposure compensation index.

        Returns once the device has applied the value, so a capture fired
        afterwards sees the new exposure.
        """
        ...  # pragma: no cover

    def exposure_range(self) -> ExposureRange | None:
        """Current supported range, or None if the device has no exposure
        compensation."""
        ...  # pragma: no cover

    def exposure_index(self) -> int:
        """Index currently applied on the device."""
        ...  # pragma: no cover


class ExposureControl:
    """Critical section around a single exposure actuator.

    Thread Safety:
        ``exclusive()`` and ``set_index()`` serialise on one lock. The lock is
        never held while waiting on another lock, so callers cannot deadlock
        through this class.
    """

    def __init__(self, actuator: ExposureActuator) -> None:
        """Wrap ``actuator``; the caller keeps ownership of the device."""
        self._actuator = actuator
        self._lock = threading.Lock()
        self._owner: str | None = None

    @property
    def actuator(self) -> ExposureActuator:
        """The wrapped device."""
        return self._actuator

    @property
    def is_held(self) -> bool:
        """True while an ``exclusive()`` block is active."""
        return self._lock.locked()

    @property
    def owner(self) -> str | None:
        """Label passed to the active ``exclusive()`` call, if any."""
        return self._owner

    @contextmanager
    def exclusive(
        self, owner: str = "bracket", timeout: float | None = None
    ) -> Iterator[ExposureActuator]:
        """Hold the actuator for the duration of the ``with`` block.

        Args:
            owner: Label recorded for logging and ``owner``.
            timeout: Seconds to wait for the lock. None waits indefinitely,
                0 fails immediately if the lock is held.

        Yields:
            The wrapped actuator.

        Raises:
            ExposureControlBusyError: If the lock could not be acquired
                within ``timeout``.

        Example:
            >>> with control.exclusive(owner="hdr") as actuator:
            ...     actuator.set_exposure_compensation_index(2)
        """
        acquired = (
            self._lock.acquire()
            if timeout is None
            else self._lock.acquire(timeout=timeout)
        )
        if not acquired:
            raise ExposureControlBusyError(
                f"exposure control held by {self._owner!r}, requested by {owner!r}"
            )
        self._owner = owner
        logger.debug("Exposure control acquired", owner=owner)
        try:
            yield self._actuator
        finally:
            self._owner = None
            self._lock.release()
            logger.debug("Exposure control released", owner=owner)

    def set_index(self, index: int) -> bool:
        """Apply an ad-hoc exposure index unless a bracket holds the device.

        The index is clamped into the device range. Devices without exposure
        compensation accept nothing.

        Business context: The viewfinder's EV slider goes through here. While
        a bracket runs the slider is ignored and the preview stays on
        whatever exposure the bracket set.

        Args:
            index: Requested exposure compensation index.

        Returns:
            True if a value was sent to the device, False if the control is
            held or the device has no exposure range.
        """
        if not self._lock.acquire(blocking=False):
            logger.debug("Exposure change refused, control held", owner=self._owner)
            return False
        try:
            exposure_range = self._actuator.exposure_range()
            if exposure_range is None:
                return False
            self._actuator.set_exposure_compensation_index(exposure_range.clamp(index))
            return True
        finally:
            self._lock.release()
