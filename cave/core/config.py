from __future__ import annotations

from functools import lru_cache
from datetime import timedelta
from typing import Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..domain.models import HysteresisConfig, ReadingLimits
from ..storage.history import retention_capacity


class Settings(BaseSettings):
    """Static configuration, loaded once at startup from the environment / .env.

    Sample interval, dwell time and retention have no defaults on purpose:
    they depend on the cave and must be set explicitly.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", frozen=True)

    app_name: str = "Cheese Cave"
    timezone: str = "UTC"

    # Control
    target_inside_temp_c: float = 12.0
    deadband_c: float = Field(default=1.0, gt=0)
    min_dwell_seconds: float = Field(ge=0)
    sample_interval_seconds: float = Field(gt=0)

    # History: either an explicit capacity or a retention window
    history_capacity: Optional[int] = Field(default=None, gt=0)
    retention_hours: Optional[float] = Field(default=None, gt=0)

    # Collaborator timeouts
    sensor_timeout_seconds: float = Field(default=5.0, gt=0)
    relay_timeout_seconds: float = Field(default=5.0, gt=0)

    # Plausibility limits; values outside are treated as sensor faults
    temp_min_c: float = -40.0
    temp_max_c: float = 80.0
    humidity_min_pct: float = 0.0
    humidity_max_pct: float = 100.0

    # Sensor mode: "sim" or "rs485"
    sensor_mode: Literal["sim", "rs485"] = "sim"

    # RS485 / Modbus RTU
    rs485_port: str = "/dev/ttyUSB0"      # Windows example: "COM3"
    rs485_baudrate: int = 9600
    rs485_timeout_seconds: float = Field(default=1.0, gt=0)
    inside_slave_id: int = Field(default=1, ge=1, le=247)
    outside_slave_id: int = Field(default=2, ge=0, le=247)   # 0 = no outside probe

    # Climate register definition (XY-MD02 / SHT20 style probes)
    climate_functioncode: int = 4             # 3=holding, 4=input
    temp_register_address: int = 1
    humidity_register_address: int = 2
    climate_scale: float = 0.1

    # Relay mode: "sim" or "sonoff"
    relay_mode: Literal["sim", "sonoff"] = "sim"

    # Sonoff DIY-mode switches, one per relay
    sonoff_cooling_ip: str = "192.168.1.20"
    sonoff_cooling_device_id: str = ""
    sonoff_heating_ip: str = "192.168.1.21"
    sonoff_heating_device_id: str = ""
    sonoff_port: int = 8081

    # Logging
    log_level: str = "INFO"
    log_file: str = "cave.log"   # empty = console only

    @model_validator(mode="after")
    def _check_consistency(self) -> "Settings":
        if self.history_capacity is None and self.retention_hours is None:
            raise ValueError("one of history_capacity or retention_hours must be set")
        if self.outside_slave_id == self.inside_slave_id:
            raise ValueError("inside_slave_id and outside_slave_id must differ")
        if self.temp_min_c >= self.temp_max_c:
            raise ValueError("temp_min_c must be below temp_max_c")
        if self.humidity_min_pct >= self.humidity_max_pct:
            raise ValueError("humidity_min_pct must be below humidity_max_pct")
        if self.climate_functioncode not in (3, 4):
            raise ValueError(f"Unsupported climate_functioncode: {self.climate_functioncode}")
        if not self.target_inside_temp_c > self.temp_min_c or not self.target_inside_temp_c < self.temp_max_c:
            raise ValueError("target_inside_temp_c must lie within the temperature limits")
        # surfaces as a ValidationError like every other field error
        self.hysteresis_config()
        return self

    @property
    def resolved_history_capacity(self) -> int:
        if self.history_capacity is not None:
            return self.history_capacity
        return retention_capacity(
            timedelta(hours=self.retention_hours), timedelta(seconds=self.sample_interval_seconds)
        )

    def hysteresis_config(self) -> HysteresisConfig:
        return HysteresisConfig(
            target_inside_temp_c=self.target_inside_temp_c,
            deadband_c=self.deadband_c,
            min_dwell=timedelta(seconds=self.min_dwell_seconds),
            sample_interval=timedelta(seconds=self.sample_interval_seconds),
            history_capacity=self.resolved_history_capacity,
        ).validate()

    def limits(self) -> ReadingLimits:
        return ReadingLimits(
            temp_min_c=self.temp_min_c,
            temp_max_c=self.temp_max_c,
            humidity_min_pct=self.humidity_min_pct,
            humidity_max_pct=self.humidity_max_pct,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()
