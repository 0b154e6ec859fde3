from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core.config import Settings
from ..core.timeutil import now_local
from ..domain.models import ControlDecision, RelayState
from ..domain.policy import desired_state
from ..sensors.simulated_climate_sensor import SimulatedCaveSensor, WalkConfig
from ..services.control_loop import ControlLoop
from ..services.mdns_discovery import discover_sonoff_devices
from ..storage.history import HistoryStore
from .schemas import SimFailureRateRequest, SimManualRequest, SimWalkRequest

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Dependency getters ---
# Placeholders; create_app() wires the real ones via app.dependency_overrides.
def get_loop() -> ControlLoop:  # overridden in main
    raise RuntimeError("Control loop dependency not configured")

def get_store() -> HistoryStore:  # overridden in main
    raise RuntimeError("History store dependency not configured")

def get_app_settings() -> Settings:  # overridden in main
    raise RuntimeError("Settings dependency not configured")

def get_sim_sensor() -> SimulatedCaveSensor:  # overridden in main
    raise RuntimeError("Simulated sensor dependency not configured")


def _sim_sensor_or_404(sensor: Optional[SimulatedCaveSensor] = Depends(get_sim_sensor)) -> SimulatedCaveSensor:
    if sensor is None:
        raise HTTPException(status_code=404, detail="Sim sensor not available (sensor_mode is not 'sim').")
    return sensor


def decision_to_dict(d: ControlDecision) -> dict:
    r = d.reading
    return {
        "ts_utc": d.timestamp.ts_utc.isoformat(),
        "inside_temp_c": r.inside_temp_c,
        "outside_temp_c": r.outside_temp_c,
        "inside_humidity_pct": r.inside_humidity_pct,
        "outside_humidity_pct": r.outside_humidity_pct,
        "sensor_error": r.error,
        "desired_state": d.desired_state.value,
        "applied_state": d.applied_state.value,
        "relay_fault": d.relay_fault,
    }


_RELAY_LEVEL = {RelayState.HEATING: -1, RelayState.IDLE: 0, RelayState.COOLING: 1}

SERIES: dict[str, Callable[[ControlDecision], Optional[float]]] = {
    "temp-inside": lambda d: d.reading.inside_temp_c,
    "temp-outside": lambda d: d.reading.outside_temp_c,
    "humidity-inside": lambda d: d.reading.inside_humidity_pct,
    "humidity-outside": lambda d: d.reading.outside_humidity_pct,
    "relay": lambda d: _RELAY_LEVEL[d.applied_state],
}


def _as_utc(ts: Optional[datetime]) -> Optional[datetime]:
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


@router.get("/live")
async def get_live(
    loop: ControlLoop = Depends(get_loop),
    store: HistoryStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    latest = store.latest()
    band = desired_state(latest.reading, loop.config) if latest else None
    return {
        "app": settings.app_name,
        "now_local": now_local(settings.timezone).isoformat(),
        "controller": loop.status(),
        "band": band.value if band else None,
        "latest": decision_to_dict(latest) if latest else None,
    }


@router.get("/config")
async def get_config(loop: ControlLoop = Depends(get_loop)):
    cfg = loop.config
    return {
        "target_inside_temp_c": cfg.target_inside_temp_c,
        "deadband_c": cfg.deadband_c,
        "min_dwell_seconds": cfg.min_dwell.total_seconds(),
        "sample_interval_seconds": cfg.sample_interval.total_seconds(),
        "history_capacity": cfg.history_capacity,
    }


@router.get("/history")
async def history(
    since: Optional[datetime] = None,
    limit: int = Query(default=1000, ge=1, le=100_000),
    store: HistoryStore = Depends(get_store),
):
    since = _as_utc(since)
    rows = store.snapshot_since(since) if since else store.snapshot()
    rows = rows[-limit:]
    return {
        "count": len(rows),
        "capacity": store.capacity,
        "rows": [decision_to_dict(d) for d in rows],
    }


@router.get("/series/{name}")
async def series(
    name: str,
    since: Optional[datetime] = None,
    store: HistoryStore = Depends(get_store),
):
    pick = SERIES.get(name)
    if pick is None:
        raise HTTPException(status_code=404, detail=f"unknown series: {name}")
    since = _as_utc(since)
    rows = store.snapshot_since(since) if since else store.snapshot()
    # faults stay in as nulls so graphs show gaps instead of invented values
    return {
        "name": name,
        "points": [[d.timestamp.ts_utc.isoformat(), pick(d)] for d in rows],
    }


# --- Simulation endpoints ---
@router.get("/sim/status")
async def sim_status(sensor: SimulatedCaveSensor = Depends(_sim_sensor_or_404)):
    return sensor.status()


@router.post("/sim/enable")
async def sim_enable(sensor: SimulatedCaveSensor = Depends(_sim_sensor_or_404)):
    sensor.enable()
    return {"ok": True, "enabled": True}


@router.post("/sim/disable")
async def sim_disable(sensor: SimulatedCaveSensor = Depends(_sim_sensor_or_404)):
    sensor.disable()
    return {"ok": True, "enabled": False}


@router.post("/sim/manual")
async def sim_set_manual(req: SimManualRequest, sensor: SimulatedCaveSensor = Depends(_sim_sensor_or_404)):
    sensor.set_manual(**req.model_dump())
    return {"ok": True, "mode": "manual", **req.model_dump()}


@router.post("/sim/walk")
async def sim_set_walk(req: SimWalkRequest, sensor: SimulatedCaveSensor = Depends(_sim_sensor_or_404)):
    if req.outside_min_c >= req.outside_max_c:
        raise HTTPException(status_code=400, detail="outside_min_c must be below outside_max_c")
    cfg = WalkConfig(**req.model_dump())
    sensor.set_walk(cfg)
    return {"ok": True, "mode": "walk", "walk": asdict(cfg)}


@router.post("/sim/failure-rate")
async def sim_failure_rate(req: SimFailureRateRequest, sensor: SimulatedCaveSensor = Depends(_sim_sensor_or_404)):
    sensor.set_failure_rate(req.rate)
    return {"ok": True, "failure_rate": req.rate}


@router.post("/discover-sonoff")
async def discover_sonoff():
    devices = await discover_sonoff_devices(timeout=3.0)
    return {"devices": [asdict(d) for d in devices]}
