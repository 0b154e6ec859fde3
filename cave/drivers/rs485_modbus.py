from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

from pymodbus.client import ModbusSerialClient

from ..domain.errors import SensorFault

logger = logging.getLogger(__name__)


@dataclass
class ModbusRtuConfig:
    port: str = "/dev/ttyUSB0"      # Windows example: "COM3"
    baudrate: int = 9600
    bytesize: int = 8
    parity: str = "N"               # "N", "E", "O"
    stopbits: int = 1
    timeout_s: float = 1.0
    slave_id: int = 1               # default device when a call does not name one
    reconnect_backoff_s: float = 1.0
    max_reconnect_backoff_s: float = 10.0


class RS485ModbusRTU:
    """
    Modbus RTU over serial/USB driver.
    Responsible for: connect/reconnect, raw register reads. Several probes
    can share the bus; each call names the device it addresses.
    """

    def __init__(self, cfg: ModbusRtuConfig, client: Optional[ModbusSerialClient] = None):
        self.cfg = cfg
        self._client = client or ModbusSerialClient(
            port=cfg.port,
            baudrate=cfg.baudrate,
            bytesize=cfg.bytesize,
            parity=cfg.parity,
            stopbits=cfg.stopbits,
            timeout=cfg.timeout_s,
        )
        # one transaction on the wire at a time
        self._bus_lock = threading.Lock()
        self._connected = False
        self._backoff = cfg.reconnect_backoff_s

    def connect(self) -> None:
        if self._connected:
            return
        ok = self._client.connect()
        if not ok:
            raise SensorFault(f"Unable to connect Modbus RTU on {self.cfg.port}")
        self._connected = True
        self._backoff = self.cfg.reconnect_backoff_s
        logger.info("Modbus RTU connected on %s (baud=%s)", self.cfg.port, self.cfg.baudrate)

    def close(self) -> None:
        try:
            self._client.close()
        finally:
            self._connected = False

    def _ensure_connected(self) -> None:
        if self._connected:
            return
        # one attempt per call; bounded backoff so a dead bus does not spin
        try:
            self.connect()
        except SensorFault as e:
            logger.warning("Modbus reconnect failed: %s", e)
            time.sleep(self._backoff)
            self._backoff = min(self._backoff * 2, self.cfg.max_reconnect_backoff_s)
            raise

    def read_holding_registers(self, address: int, count: int, slave_id: Optional[int] = None) -> list[int]:
        """
        Function code 3. Returns list of 16-bit register values.
        """
        return self._read("holding", address, count, slave_id)

    def read_input_registers(self, address: int, count: int, slave_id: Optional[int] = None) -> list[int]:
        """
        Function code 4. Returns list of 16-bit register values.
        """
        return self._read("input", address, count, slave_id)

    def _read(self, kind: str, address: int, count: int, slave_id: Optional[int]) -> list[int]:
        device_id = slave_id if slave_id is not None else self.cfg.slave_id
        with self._bus_lock:
            self._ensure_connected()
            if kind == "input":
                rr = self._client.read_input_registers(address=address, count=count, device_id=device_id)
            else:
                rr = self._client.read_holding_registers(address=address, count=count, device_id=device_id)
        if rr.isError():
            # Mark disconnected so next call attempts reconnect
            self._connected = False
            raise SensorFault(f"Modbus read_{kind}_registers error (slave {device_id}): {rr}")
        return list(rr.registers)
