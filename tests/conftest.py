"""Pytest configuration and fixtures for viewfinder-core tests.

Provides synthetic frames, fake devices and codecs that let the bracket
and capture flows run without OpenCV or a camera, plus logging isolation.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import numpy as np
import pytest

from tests.helpers import FakeCamera, FakeCodec, MemorySink
from viewfinder.analysis.frame import LumaFrame
from viewfinder.config import reset_config
from viewfinder.observability import reset_logging


@pytest.fixture(autouse=True)
def _isolate_global_state() -> Iterator[None]:
    """Reset process-wide logging and configuration after every test."""
    yield
    reset_logging()
    reset_config()


@pytest.fixture
def quadrant_frame() -> LumaFrame:
    """8x8 frame whose top-left 4x4 quadrant is 255 and the rest 0."""
    luma = np.zeros((8, 8), dtype=np.uint8)
    luma[:4, :4] = 255
    return LumaFrame.from_array(luma)


@pytest.fixture
def gradient_frame() -> LumaFrame:
    """97x53 horizontal gradient; sizes not divisible by common grids."""
    x = np.linspace(0, 255, 97)
    luma = np.tile(np.rint(x).astype(np.uint8), (53, 1))
    return LumaFrame.from_array(luma)


@pytest.fixture
def fake_camera() -> FakeCamera:
    """Fake camera with range [-1, 1]."""
    return FakeCamera()


@pytest.fixture
def fake_codec() -> FakeCodec:
    """Fake codec for FakeCamera files."""
    return FakeCodec()


@pytest.fixture
def memory_sink() -> MemorySink:
    """In-memory capture sink."""
    return MemorySink()


@pytest.fixture
def staging_root(tmp_path: Path) -> Path:
    """Parent directory for bracket staging directories."""
    root = tmp_path / "staging"
    root.mkdir()
    return root
