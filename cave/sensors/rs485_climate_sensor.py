from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional, Tuple

from .base import Sensor
from ..domain.errors import SensorFault
from ..domain.models import ClimateSample
from ..drivers.rs485_modbus import RS485ModbusRTU

logger = logging.getLogger(__name__)


@dataclass
class ClimateRegisterSpec:
    functioncode: int = 4          # 3=holding, 4=input
    temp_address: int = 1
    humidity_address: int = 2
    scale: float = 0.1             # raw is signed tenths of a unit


def _to_signed(raw: int) -> int:
    return raw - 0x10000 if raw & 0x8000 else raw


class RS485ClimateSensor(Sensor):
    """Temperature/humidity probes (XY-MD02 style) on one RS485 bus.

    The inside probe is mandatory. The outside probe is optional; when it
    fails only the outside values go missing.
    """

    def __init__(
        self,
        driver: RS485ModbusRTU,
        inside_slave_id: int = 1,
        outside_slave_id: Optional[int] = 2,
        spec: ClimateRegisterSpec = ClimateRegisterSpec(),
        sensor_id: str = "climate_rs485",
    ):
        self._driver = driver
        self._inside = inside_slave_id
        self._outside = outside_slave_id
        self._spec = spec
        self._sensor_id = sensor_id

    @property
    def sensor_id(self) -> str:
        return self._sensor_id

    def _read_probe(self, slave_id: int) -> Tuple[float, float]:
        spec = self._spec
        start = min(spec.temp_address, spec.humidity_address)
        count = abs(spec.temp_address - spec.humidity_address) + 1

        if spec.functioncode == 3:
            regs = self._driver.read_holding_registers(start, count, slave_id=slave_id)
        elif spec.functioncode == 4:
            regs = self._driver.read_input_registers(start, count, slave_id=slave_id)
        else:
            raise ValueError(f"Unsupported functioncode: {spec.functioncode}")

        if len(regs) < count:
            raise SensorFault(f"Short read from slave {slave_id}: {regs}")

        temp = _to_signed(regs[spec.temp_address - start]) * spec.scale
        humidity = regs[spec.humidity_address - start] * spec.scale
        logger.debug("RS485 probe %d: regs=%s temp=%.1f rh=%.1f", slave_id, regs, temp, humidity)
        return temp, humidity

    def read(self) -> ClimateSample:
        errors: list[str] = []
        inside: Tuple[Optional[float], Optional[float]] = (None, None)
        outside: Tuple[Optional[float], Optional[float]] = (None, None)

        try:
            inside = self._read_probe(self._inside)
        except SensorFault as e:
            logger.warning("Inside probe read failed: %s", e)
            errors.append(f"inside: {e}")

        if self._outside:
            try:
                outside = self._read_probe(self._outside)
            except SensorFault as e:
                logger.warning("Outside probe read failed: %s", e)
                errors.append(f"outside: {e}")

        probes = 2 if self._outside else 1
        if len(errors) == probes:
            raise SensorFault("; ".join(errors))

        return ClimateSample(
            inside_temp_c=inside[0],
            inside_humidity_pct=inside[1],
            outside_temp_c=outside[0],
            outside_humidity_pct=outside[1],
            error="; ".join(errors) or None,
        )

    def close(self) -> None:
        self._driver.close()
