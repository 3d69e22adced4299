"""Position fixes, sampling and background registrations."""

from triptrack.location.background import BackgroundOptions, BackgroundTaskRegistry
from triptrack.location.fix_source import FixSource, GpsdFixSource, SimulatedFixSource
from triptrack.location.permissions import PermissionGate
from triptrack.location.sampler import PositionSampler

__all__ = [
    "BackgroundOptions",
    "BackgroundTaskRegistry",
    "FixSource",
    "GpsdFixSource",
    "PermissionGate",
    "PositionSampler",
    "SimulatedFixSource",
]
