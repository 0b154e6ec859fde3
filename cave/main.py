from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .core.config import Settings, get_settings
from .core.log import configure_logging

from .api.routes import router as api_router
import cave.api.routes as routes_module

from .domain.interfaces import RelayDriver
from .domain.models import RelayId
from .drivers.relay_sonoff import SonoffDevice, SonoffRelayBoard
from .drivers.relays_sim import SimulatedRelayBoard
from .drivers.rs485_modbus import ModbusRtuConfig, RS485ModbusRTU
from .sensors.base import Sensor
from .sensors.rs485_climate_sensor import ClimateRegisterSpec, RS485ClimateSensor
from .sensors.simulated_climate_sensor import SimulatedCaveSensor
from .services.control_loop import ControlLoop
from .storage.history import HistoryStore


logger = logging.getLogger(__name__)


def build_relays(settings: Settings) -> RelayDriver:
    if settings.relay_mode == "sonoff":
        return SonoffRelayBoard(
            devices={
                RelayId.COOLING: SonoffDevice(
                    ip=settings.sonoff_cooling_ip,
                    device_id=settings.sonoff_cooling_device_id,
                    port=settings.sonoff_port,
                ),
                RelayId.HEATING: SonoffDevice(
                    ip=settings.sonoff_heating_ip,
                    device_id=settings.sonoff_heating_device_id,
                    port=settings.sonoff_port,
                ),
            },
            timeout=settings.relay_timeout_seconds,
        )
    return SimulatedRelayBoard()


def build_sensor(settings: Settings, relays: RelayDriver) -> Sensor:
    if settings.sensor_mode == "rs485":
        driver = RS485ModbusRTU(
            ModbusRtuConfig(
                port=settings.rs485_port,
                baudrate=settings.rs485_baudrate,
                timeout_s=settings.rs485_timeout_seconds,
                slave_id=settings.inside_slave_id,
            )
        )
        spec = ClimateRegisterSpec(
            functioncode=settings.climate_functioncode,
            temp_address=settings.temp_register_address,
            humidity_address=settings.humidity_register_address,
            scale=settings.climate_scale,
        )
        return RS485ClimateSensor(
            driver=driver,
            inside_slave_id=settings.inside_slave_id,
            outside_slave_id=settings.outside_slave_id or None,
            spec=spec,
        )

    # default to sim; drifts with the simulated relays when both are simulated
    return SimulatedCaveSensor(relays=relays if isinstance(relays, SimulatedRelayBoard) else None)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the app. Settings are validated before any hardware object exists."""
    settings = settings or get_settings()
    config = settings.hysteresis_config()

    relays = build_relays(settings)
    sensor = build_sensor(settings, relays)
    store = HistoryStore(config.history_capacity)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level, settings.log_file or None)
        logger.info(
            "Starting %s (sensor=%s relays=%s)", settings.app_name, settings.sensor_mode, settings.relay_mode
        )

        loop = ControlLoop(
            sensor=sensor,
            relays=relays,
            store=store,
            config=config,
            limits=settings.limits(),
            sensor_timeout_s=settings.sensor_timeout_seconds,
            relay_timeout_s=settings.relay_timeout_seconds,
        )
        app.state.loop = loop
        await loop.start()

        try:
            yield
        finally:
            await loop.stop()
            await relays.close()
            logger.info("Shutdown complete")

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.sensor = sensor
    app.state.relays = relays

    sim_sensor = sensor if isinstance(sensor, SimulatedCaveSensor) else None

    # Make the dependency functions in routes resolve to the real ones
    app.dependency_overrides[routes_module.get_loop] = lambda: app.state.loop
    app.dependency_overrides[routes_module.get_store] = lambda: store
    app.dependency_overrides[routes_module.get_app_settings] = lambda: settings
    app.dependency_overrides[routes_module.get_sim_sensor] = lambda: sim_sensor

    app.include_router(api_router, prefix="/api")
    return app
