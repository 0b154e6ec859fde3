from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

import pytest

from cave.domain.errors import SensorFault
from cave.domain.models import RelayId
from cave.drivers.relays_sim import SimulatedRelayBoard
from cave.drivers.rs485_modbus import ModbusRtuConfig, RS485ModbusRTU
from cave.sensors.rs485_climate_sensor import ClimateRegisterSpec, RS485ClimateSensor
from cave.sensors.simulated_climate_sensor import SimulatedCaveSensor, WalkConfig


@dataclass
class _Response:
    registers: List[int]
    error: bool = False

    def isError(self) -> bool:
        return self.error


class FakeModbusClient:
    def __init__(self, registers: Dict[int, List[int]], connect_ok: bool = True) -> None:
        self.registers = registers
        self.connect_ok = connect_ok
        self.connects = 0
        self.calls: list[tuple] = []

    def connect(self) -> bool:
        self.connects += 1
        return self.connect_ok

    def close(self) -> None:
        pass

    def read_input_registers(self, address: int, count: int, device_id: int) -> _Response:
        self.calls.append(("input", address, count, device_id))
        regs = self.registers.get(device_id)
        return _Response(regs or [], error=regs is None)

    def read_holding_registers(self, address: int, count: int, device_id: int) -> _Response:
        self.calls.append(("holding", address, count, device_id))
        regs = self.registers.get(device_id)
        return _Response(regs or [], error=regs is None)


def _driver(client: FakeModbusClient) -> RS485ModbusRTU:
    return RS485ModbusRTU(ModbusRtuConfig(reconnect_backoff_s=0.0), client=client)


def test_reads_inside_and_outside_probes() -> None:
    # 0xFF9C = -100 tenths -> -10.0 C
    client = FakeModbusClient({1: [125, 853], 2: [0xFF9C, 402]})
    sensor = RS485ClimateSensor(_driver(client), inside_slave_id=1, outside_slave_id=2)

    sample = sensor.read()

    assert sample.inside_temp_c == pytest.approx(12.5)
    assert sample.inside_humidity_pct == pytest.approx(85.3)
    assert sample.outside_temp_c == pytest.approx(-10.0)
    assert sample.outside_humidity_pct == pytest.approx(40.2)
    assert sample.error is None
    assert client.calls == [("input", 1, 2, 1), ("input", 1, 2, 2)]


def test_outside_probe_failure_keeps_inside_values() -> None:
    client = FakeModbusClient({1: [120, 800]})
    sensor = RS485ClimateSensor(_driver(client), inside_slave_id=1, outside_slave_id=2)

    sample = sensor.read()

    assert sample.inside_temp_c == pytest.approx(12.0)
    assert sample.outside_temp_c is None
    assert sample.error.startswith("outside:")


def test_all_probes_failing_raises() -> None:
    client = FakeModbusClient({})
    sensor = RS485ClimateSensor(_driver(client), inside_slave_id=1, outside_slave_id=2)

    with pytest.raises(SensorFault):
        sensor.read()


def test_outside_probe_is_optional() -> None:
    client = FakeModbusClient({1: [130, 900]})
    sensor = RS485ClimateSensor(_driver(client), inside_slave_id=1, outside_slave_id=None)

    sample = sensor.read()

    assert sample.inside_temp_c == pytest.approx(13.0)
    assert len(client.calls) == 1


def test_holding_registers_with_reversed_layout() -> None:
    client = FakeModbusClient({1: [700, 115]})
    spec = ClimateRegisterSpec(functioncode=3, temp_address=5, humidity_address=4, scale=0.1)
    sensor = RS485ClimateSensor(_driver(client), inside_slave_id=1, outside_slave_id=None, spec=spec)

    sample = sensor.read()

    assert sample.inside_temp_c == pytest.approx(11.5)
    assert sample.inside_humidity_pct == pytest.approx(70.0)
    assert client.calls == [("holding", 4, 2, 1)]


def test_driver_reconnects_after_error() -> None:
    client = FakeModbusClient({1: [120, 800]})
    driver = _driver(client)

    assert driver.read_input_registers(1, 2, slave_id=1) == [120, 800]
    with pytest.raises(SensorFault):
        driver.read_input_registers(1, 2, slave_id=9)
    driver.read_input_registers(1, 2, slave_id=1)

    assert client.connects == 2


def test_driver_connect_failure_is_a_sensor_fault() -> None:
    driver = _driver(FakeModbusClient({}, connect_ok=False))

    with pytest.raises(SensorFault):
        driver.read_holding_registers(0, 1)


def test_simulated_sensor_manual_and_disable() -> None:
    sensor = SimulatedCaveSensor(seed=1)
    sensor.set_manual(inside_temp_c=14.0, outside_temp_c=25.0)

    sample = sensor.read()
    assert sample.inside_temp_c == 14.0
    assert sample.outside_temp_c == 25.0
    assert sample.inside_humidity_pct is None

    sensor.disable()
    with pytest.raises(SensorFault):
        sensor.read()
    sensor.enable()
    assert sensor.read().inside_temp_c == 14.0


def test_simulated_sensor_failure_rate() -> None:
    sensor = SimulatedCaveSensor(seed=1)
    sensor.set_failure_rate(1.0)

    with pytest.raises(SensorFault):
        sensor.read()


def test_simulated_walk_follows_relays() -> None:
    import asyncio

    relays = SimulatedRelayBoard()
    sensor = SimulatedCaveSensor(relays=relays, seed=7)
    sensor.set_manual(inside_temp_c=20.0, outside_temp_c=20.0, inside_humidity_pct=80.0, outside_humidity_pct=50.0)
    sensor.set_walk(WalkConfig(step_c=0.0, leak=0.0, cooling_rate_c=0.5, outside_step_c=0.0))

    asyncio.run(relays.set(RelayId.COOLING, True))
    temps = [sensor.read().inside_temp_c for _ in range(4)]

    assert temps == pytest.approx([19.5, 19.0, 18.5, 18.0])
    assert sensor.status()["mode"] == "walk"
