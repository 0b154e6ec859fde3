from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Union

import pytest

from cave.core.config import Settings
from cave.domain.models import (
    ClimateSample,
    ControlDecision,
    HysteresisConfig,
    Instant,
    RelayState,
    SensorReading,
)
from cave.sensors.base import Sensor


class FakeClock:
    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)) -> None:
        self._wall = start
        self._mono = 1000.0

    def now(self) -> Instant:
        return Instant(ts_utc=self._wall, monotonic=self._mono)

    def advance(self, seconds: float) -> None:
        self._wall += timedelta(seconds=seconds)
        self._mono += seconds


Step = Union[float, None, BaseException, ClimateSample]


class ScriptedSensor(Sensor):
    """Plays back inside temperatures; exceptions in the script are raised."""

    def __init__(self, steps: Iterable[Step], delay_s: float = 0.0) -> None:
        self._steps: List[Step] = list(steps)
        self._delay_s = delay_s
        self.reads = 0
        self.closed = False

    @property
    def sensor_id(self) -> str:
        return "scripted"

    def push(self, *steps: Step) -> None:
        self._steps.extend(steps)

    def read(self) -> ClimateSample:
        self.reads += 1
        if self._delay_s:
            time.sleep(self._delay_s)
        step = self._steps.pop(0) if self._steps else None
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, ClimateSample):
            return step
        return ClimateSample(inside_temp_c=step)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_config():
    def _make(
        target: float = 12.0,
        deadband: float = 1.0,
        dwell_s: float = 0.0,
        interval_s: float = 60.0,
        capacity: int = 100,
    ) -> HysteresisConfig:
        return HysteresisConfig(
            target_inside_temp_c=target,
            deadband_c=deadband,
            min_dwell=timedelta(seconds=dwell_s),
            sample_interval=timedelta(seconds=interval_s),
            history_capacity=capacity,
        )

    return _make


@pytest.fixture
def make_reading():
    def _make(inside: Optional[float], at: Optional[Instant] = None, **kwargs) -> SensorReading:
        at = at or Instant(ts_utc=datetime(2024, 1, 1, tzinfo=timezone.utc), monotonic=0.0)
        return SensorReading(timestamp=at, inside_temp_c=inside, **kwargs)

    return _make


@pytest.fixture
def make_decision():
    def _make(seq: float, state: RelayState = RelayState.IDLE) -> ControlDecision:
        at = Instant(
            ts_utc=datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=seq),
            monotonic=float(seq),
        )
        return ControlDecision(
            timestamp=at,
            reading=SensorReading(timestamp=at, inside_temp_c=12.0),
            desired_state=state,
            applied_state=state,
        )

    return _make


@pytest.fixture
def scripted_sensor_cls():
    return ScriptedSensor


@pytest.fixture
def make_settings():
    def _make(**overrides) -> Settings:
        values = dict(
            sample_interval_seconds=60,
            min_dwell_seconds=300,
            history_capacity=100,
            log_file="",
        )
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make
