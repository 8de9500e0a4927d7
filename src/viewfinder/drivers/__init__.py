"""Simulated devices for development and testing without hardware.

    from viewfinder.drivers import DigitalTwinCamera
"""

from viewfinder.drivers.twin import (
    DEFAULT_TWIN_RANGE,
    DigitalTwinCamera,
    DigitalTwinCameraConfig,
)

__all__ = [
    "DEFAULT_TWIN_RANGE",
    "DigitalTwinCamera",
    "DigitalTwinCameraConfig",
]
