from __future__ import annotations

import random
from dataclasses import dataclass, asdict
from threading import Lock
from typing import Optional

from .base import Sensor
from ..domain.errors import SensorFault
from ..domain.models import ClimateSample, RelayId
from ..drivers.relays_sim import SimulatedRelayBoard


@dataclass
class WalkConfig:
    step_c: float = 0.2            # max random change per read
    leak: float = 0.02             # fraction of the inside/outside gap closed per read
    cooling_rate_c: float = 0.5    # pull per read while the cooling relay is on
    heating_rate_c: float = 0.3
    outside_step_c: float = 0.4
    outside_min_c: float = 5.0
    outside_max_c: float = 35.0
    humidity_step_pct: float = 1.0


def _bounded_step(rng: random.Random, value: float, step: float, lo: float, hi: float) -> float:
    value += rng.uniform(-step, step)
    return min(max(value, lo), hi)


class SimulatedCaveSensor(Sensor):
    """
    Development sensor.

    "manual" returns fixed values. "walk" drifts like a small fridge: a
    bounded random walk for the outside air, and an inside temperature that
    leaks toward outside and is pulled by whichever simulated relay is on.
    """

    def __init__(
        self,
        sensor_id: str = "climate_sim",
        relays: Optional[SimulatedRelayBoard] = None,
        seed: Optional[int] = None,
    ):
        self._sensor_id = sensor_id
        self._relays = relays
        self._rng = random.Random(seed)
        self._lock = Lock()
        self._enabled = True
        self._mode = "manual"   # manual|walk
        self._failure_rate = 0.0
        self._walk = WalkConfig()

        self._inside_temp: Optional[float] = 12.0
        self._outside_temp: Optional[float] = 21.0
        self._inside_rh: Optional[float] = 85.0
        self._outside_rh: Optional[float] = 50.0

    @property
    def sensor_id(self) -> str:
        return self._sensor_id

    def enable(self) -> None:
        with self._lock:
            self._enabled = True

    def disable(self) -> None:
        with self._lock:
            self._enabled = False

    def set_failure_rate(self, rate: float) -> None:
        with self._lock:
            self._failure_rate = min(max(float(rate), 0.0), 1.0)

    def set_manual(
        self,
        inside_temp_c: Optional[float],
        outside_temp_c: Optional[float] = None,
        inside_humidity_pct: Optional[float] = None,
        outside_humidity_pct: Optional[float] = None,
    ) -> None:
        with self._lock:
            self._mode = "manual"
            self._inside_temp = inside_temp_c
            self._outside_temp = outside_temp_c
            self._inside_rh = inside_humidity_pct
            self._outside_rh = outside_humidity_pct

    def set_walk(self, cfg: WalkConfig) -> None:
        with self._lock:
            self._mode = "walk"
            self._walk = cfg
            # the walk needs somewhere to start from
            if self._inside_temp is None:
                self._inside_temp = 12.0
            if self._outside_temp is None:
                self._outside_temp = 21.0
            if self._inside_rh is None:
                self._inside_rh = 85.0
            if self._outside_rh is None:
                self._outside_rh = 50.0

    def status(self) -> dict:
        with self._lock:
            return {
                "enabled": self._enabled,
                "mode": self._mode,
                "failure_rate": self._failure_rate,
                "inside_temp_c": self._inside_temp,
                "outside_temp_c": self._outside_temp,
                "inside_humidity_pct": self._inside_rh,
                "outside_humidity_pct": self._outside_rh,
                "walk": asdict(self._walk),
            }

    def _step(self) -> None:
        cfg = self._walk
        rng = self._rng
        self._outside_temp = _bounded_step(rng, self._outside_temp, cfg.outside_step_c, cfg.outside_min_c, cfg.outside_max_c)

        inside = self._inside_temp + cfg.leak * (self._outside_temp - self._inside_temp)
        if self._relays is not None:
            if self._relays.is_on(RelayId.COOLING):
                inside -= cfg.cooling_rate_c
            if self._relays.is_on(RelayId.HEATING):
                inside += cfg.heating_rate_c
        self._inside_temp = _bounded_step(rng, inside, cfg.step_c, -10.0, 50.0)

        self._inside_rh = _bounded_step(rng, self._inside_rh, cfg.humidity_step_pct, 60.0, 98.0)
        self._outside_rh = _bounded_step(rng, self._outside_rh, cfg.humidity_step_pct, 20.0, 90.0)

    def read(self) -> ClimateSample:
        with self._lock:
            if not self._enabled:
                raise SensorFault("Simulated sensor disabled")

            if self._failure_rate > 0.0 and self._rng.random() < self._failure_rate:
                raise SensorFault("Simulated read failure")

            if self._mode == "walk":
                self._step()

            return ClimateSample(
                inside_temp_c=self._inside_temp,
                outside_temp_c=self._outside_temp,
                inside_humidity_pct=self._inside_rh,
                outside_humidity_pct=self._outside_rh,
            )
