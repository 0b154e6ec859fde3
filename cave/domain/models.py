from __future__ import annotations
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .errors import ConfigError


@dataclass(frozen=True)
class Instant:
    ts_utc: datetime
    monotonic: float

    def seconds_since(self, other: "Instant") -> float:
        return self.monotonic - other.monotonic


class RelayId(str, Enum):
    COOLING = "cooling"
    HEATING = "heating"


class RelayState(str, Enum):
    """Commanded state of the relay pair. At most one relay is ever energized."""

    IDLE = "idle"
    COOLING = "cooling"
    HEATING = "heating"

    @property
    def energized(self) -> Optional[RelayId]:
        if self is RelayState.COOLING:
            return RelayId.COOLING
        if self is RelayState.HEATING:
            return RelayId.HEATING
        return None


@dataclass(frozen=True)
class ReadingLimits:
    temp_min_c: float = -40.0
    temp_max_c: float = 80.0
    humidity_min_pct: float = 0.0
    humidity_max_pct: float = 100.0


@dataclass(frozen=True)
class ClimateSample:
    """Raw values as returned by a sensor driver, before timestamping."""

    inside_temp_c: Optional[float] = None
    outside_temp_c: Optional[float] = None
    inside_humidity_pct: Optional[float] = None
    outside_humidity_pct: Optional[float] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class SensorReading:
    timestamp: Instant
    inside_temp_c: Optional[float] = None
    outside_temp_c: Optional[float] = None
    inside_humidity_pct: Optional[float] = None
    outside_humidity_pct: Optional[float] = None
    error: Optional[str] = None

    @classmethod
    def fault(cls, timestamp: Instant, error: str) -> "SensorReading":
        return cls(timestamp=timestamp, error=error)

    @classmethod
    def from_sample(
        cls, timestamp: Instant, sample: ClimateSample, limits: ReadingLimits
    ) -> "SensorReading":
        """Stamp a raw sample, dropping values that are not finite or out of range."""
        errors: list[str] = [sample.error] if sample.error else []

        def check(name: str, value: Optional[float], lo: float, hi: float) -> Optional[float]:
            if value is None:
                return None
            value = float(value)
            if not math.isfinite(value) or value < lo or value > hi:
                errors.append(f"{name}={value} out of range [{lo}, {hi}]")
                return None
            return value

        return cls(
            timestamp=timestamp,
            inside_temp_c=check("inside_temp_c", sample.inside_temp_c, limits.temp_min_c, limits.temp_max_c),
            outside_temp_c=check("outside_temp_c", sample.outside_temp_c, limits.temp_min_c, limits.temp_max_c),
            inside_humidity_pct=check(
                "inside_humidity_pct", sample.inside_humidity_pct, limits.humidity_min_pct, limits.humidity_max_pct
            ),
            outside_humidity_pct=check(
                "outside_humidity_pct", sample.outside_humidity_pct, limits.humidity_min_pct, limits.humidity_max_pct
            ),
            error="; ".join(errors) or None,
        )

    @property
    def ok(self) -> bool:
        return self.error is None and self.inside_temp_c is not None


@dataclass(frozen=True)
class ControlDecision:
    timestamp: Instant
    reading: SensorReading
    desired_state: RelayState
    applied_state: RelayState
    relay_fault: Optional[str] = None

    @property
    def relay_state(self) -> RelayState:
        return self.applied_state


@dataclass(frozen=True)
class HysteresisConfig:
    target_inside_temp_c: float
    deadband_c: float
    min_dwell: timedelta
    sample_interval: timedelta
    history_capacity: int

    def validate(self) -> "HysteresisConfig":
        """Raise ConfigError on parameters the loop must not be started with."""
        if not math.isfinite(self.target_inside_temp_c):
            raise ConfigError(f"target_inside_temp_c must be finite, got {self.target_inside_temp_c}")
        if not self.deadband_c > 0:
            raise ConfigError(f"deadband_c must be > 0, got {self.deadband_c}")
        if self.min_dwell < timedelta(0):
            raise ConfigError(f"min_dwell must be >= 0, got {self.min_dwell}")
        if self.sample_interval <= timedelta(0):
            raise ConfigError(f"sample_interval must be > 0, got {self.sample_interval}")
        if self.history_capacity <= 0:
            raise ConfigError(f"history_capacity must be > 0, got {self.history_capacity}")
        return self
