from __future__ import annotations
from typing import Optional


class CaveError(Exception):
    """Base class for controller errors."""


class ConfigError(CaveError, ValueError):
    """Invalid static configuration. Fatal at startup."""


class SensorFault(CaveError):
    """Sensor transport or probe failure."""


class RelayFault(CaveError):
    """A relay command was rejected, timed out or could not be delivered."""

    def __init__(self, message: str, relay_id: Optional[object] = None) -> None:
        super().__init__(message)
        self.relay_id = relay_id
