"""Test helpers for viewfinder-core.

Provides protocol compliance assertions and fake devices used across the
test modules.

Example:
    from tests.helpers import FakeCamera, assert_implements_protocol
    from viewfinder.devices.exposure import ExposureActuator

    def test_fake_is_actuator():
        assert_implements_protocol(FakeCamera(), ExposureActuator)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

import numpy as np

from viewfinder.devices.exposure import ExposureRange
from viewfinder.errors import CaptureFailedError, DecodeError
from viewfinder.imaging.types import DecodedImage


def assert_implements_protocol(instance: object, protocol: type[Protocol]) -> None:
    """Assert that an instance implements a runtime-checkable Protocol.

    Business context: Lets tests verify that fakes and the digital twin
    satisfy the same device contracts as real cameras, so a missing method
    fails in the test suite rather than in the middle of a bracket.

    Args:
        instance: Object to check.
        protocol: Protocol decorated with ``@runtime_checkable``.

    Raises:
        AssertionError: If the instance is missing protocol members; the
            message lists them.
        TypeError: If the protocol is not runtime checkable.
    """
    if isinstance(instance, protocol):
        return
    object_attrs = set(dir(object))
    expected = {
        attr
        for attr in set(dir(protocol)) - object_attrs
        if not attr.startswith("_")
    }
    missing = sorted(attr for attr in expected if not hasattr(instance, attr))
    missing_str = ", ".join(missing) if missing else "unknown"
    raise AssertionError(
        f"{type(instance).__name__} does not implement {protocol.__name__}. "
        f"Missing: {missing_str}"
    )


def assert_all_implement_protocol(instances: list[Any], protocol: type[Protocol]) -> None:
    """Assert that every instance implements ``protocol``.

    Raises:
        AssertionError: Naming the index of the first non-compliant instance.
    """
    for i, instance in enumerate(instances):
        try:
            assert_implements_protocol(instance, protocol)
        except AssertionError as e:
            raise AssertionError(f"Instance at index {i}: {e}") from e


class FakeActuator:
    """Exposure actuator recording every command.

    Args:
        exposure_range: Range reported to callers, or None.
    """

    def __init__(self, exposure_range: ExposureRange | None = ExposureRange(-1, 1)) -> None:
        self.range = exposure_range
        self.index = 0
        self.history: list[int] = []

    def set_exposure_compensation_index(self, index: int) -> None:
        self.index = index
        self.history.append(index)

    def exposure_range(self) -> ExposureRange | None:
        return self.range

    def exposure_index(self) -> int:
        return self.index


class FakeCamera(FakeActuator):
    """Actuator plus still capture writing the EV index into the file.

    Shots at an index in ``fail_indices`` raise ``CaptureFailedError``.
    ``on_capture`` runs before each shot, e.g. to cancel a session.
    """

    def __init__(
        self,
        exposure_range: ExposureRange | None = ExposureRange(-1, 1),
        fail_indices: set[int] | None = None,
    ) -> None:
        super().__init__(exposure_range)
        self.fail_indices = fail_indices or set()
        self.written: list[Path] = []
        self.on_capture = None

    def capture_still(self, destination: Path) -> None:
        if self.on_capture is not None:
            self.on_capture()
        if self.index in self.fail_indices:
            raise CaptureFailedError(f"fake failure at {self.index}")
        destination.write_text(str(self.index))
        self.written.append(destination)


class FakeCodec:
    """Codec decoding FakeCamera files into flat images.

    A file holding EV index ``i`` decodes to a 4x6 RGB image filled with
    ``base + step * i``. Files containing ``"corrupt"`` raise DecodeError.
    """

    def __init__(self, base: int = 100, step: int = 40, size: tuple[int, int] = (6, 4)) -> None:
        self.base = base
        self.step = step
        self.size = size
        self.decoded: list[Path] = []
        self.encoded: list[tuple[tuple[int, ...], int]] = []

    def decode_file(self, path: Path, ev_index: int | None = None) -> DecodedImage:
        if not path.exists():
            raise DecodeError(f"missing {path}")
        text = path.read_text()
        if text == "corrupt":
            raise DecodeError(f"corrupt {path}")
        self.decoded.append(path)
        value = int(np.clip(self.base + self.step * int(text), 0, 255))
        width, height = self.size
        pixels = np.full((height, width, 3), value, dtype=np.uint8)
        return DecodedImage(width=width, height=height, pixels=pixels, ev_index=ev_index)

    def encode_jpeg(self, pixels, quality: int = 95) -> bytes:
        self.encoded.append((tuple(pixels.shape), quality))
        return b"\xff\xd8fake"


class MemorySink:
    """Capture sink keeping saved images in a list."""

    def __init__(self) -> None:
        self.saved: list[tuple[object, str, str]] = []

    def save(self, image, filename: str, mime_type: str) -> str:
        self.saved.append((image, filename, mime_type))
        return f"memory://{filename}"

