from __future__ import annotations
from typing import Optional

from .models import HysteresisConfig, Instant, RelayState, SensorReading


def desired_state(reading: SensorReading, config: HysteresisConfig) -> Optional[RelayState]:
    """Classify the inside temperature against the target band.

    Returns None when the inside temperature is missing.
    """
    if reading.inside_temp_c is None:
        return None

    delta = reading.inside_temp_c - config.target_inside_temp_c
    if delta > config.deadband_c:
        return RelayState.COOLING
    if delta < -config.deadband_c:
        return RelayState.HEATING
    return RelayState.IDLE


def decide(
    prev_state: RelayState,
    prev_state_since: Instant,
    now: Instant,
    reading: SensorReading,
    config: HysteresisConfig,
) -> RelayState:
    """
    Next relay state for this tick.

    Logic:
      - inside temp missing               → hold prev_state (never actuate on missing data)
      - temp > target + deadband          → COOLING
      - temp < target - deadband          → HEATING
      - otherwise                         → IDLE
      - a change is only allowed once prev_state has been held for min_dwell

    Pure: the caller records `now` as the start of the new state when the
    returned state differs from prev_state.
    """
    desired = desired_state(reading, config)
    if desired is None or desired == prev_state:
        return prev_state

    if now.seconds_since(prev_state_since) >= config.min_dwell.total_seconds():
        return desired

    return prev_state  # anti-chatter guard
