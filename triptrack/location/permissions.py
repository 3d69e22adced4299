"""Location permission checks."""

from __future__ import annotations

import logging

from triptrack.config import PermissionsConfig

logger = logging.getLogger(__name__)


class PermissionGate:
    """Answers foreground/background location permission requests."""

    def __init__(self, foreground: bool = True, background: bool = True) -> None:
        self._foreground = foreground
        self._background = background

    @classmethod
    def from_config(cls, config: PermissionsConfig) -> PermissionGate:
        return cls(foreground=config.foreground, background=config.background)

    def request_foreground(self) -> bool:
        if not self._foreground:
            logger.warning("Foreground location permission denied")
        return self._foreground

    def request_background(self) -> bool:
        if not self._background:
            logger.warning("Background location permission denied")
        return self._background

    def set_grants(self, foreground: bool | None = None, background: bool | None = None) -> None:
        """Update grants, e.g. after the user changes them in system settings."""
        if foreground is not None:
            self._foreground = foreground
        if background is not None:
            self._background = background


__all__ = ["PermissionGate"]
