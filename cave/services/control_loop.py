from __future__ import annotations
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import Optional, Protocol

from ..core.timeutil import SystemClock
from ..domain.errors import RelayFault, SensorFault
from ..domain.interfaces import RelayDriver
from ..domain.models import (
    ControlDecision,
    HysteresisConfig,
    Instant,
    ReadingLimits,
    RelayId,
    RelayState,
    SensorReading,
)
from ..domain.policy import decide, desired_state
from ..sensors.base import Sensor
from ..storage.history import HistoryStore


logger = logging.getLogger(__name__)


class Clock(Protocol):
    def now(self) -> Instant:
        ...


@dataclass
class LoopStats:
    ticks: int = 0
    overruns: int = 0          # ticks that ran past the next boundary
    skipped_ticks: int = 0     # boundaries dropped because of overruns
    sensor_faults: int = 0
    relay_faults: int = 0


class ControlLoop:
    """
    Periodic sample -> decide -> actuate -> record loop.

    The only component allowed to touch the sensor and the relays. Runs as
    a single asyncio task; ticks never overlap.
    """

    def __init__(
        self,
        sensor: Sensor,
        relays: RelayDriver,
        store: HistoryStore,
        config: HysteresisConfig,
        limits: ReadingLimits = ReadingLimits(),
        clock: Optional[Clock] = None,
        sensor_timeout_s: float = 5.0,
        relay_timeout_s: float = 5.0,
    ) -> None:
        self._sensor = sensor
        self._relays = relays
        self._store = store
        self._config = config.validate()
        self._limits = limits
        self._clock = clock or SystemClock()
        self._sensor_timeout_s = sensor_timeout_s
        self._relay_timeout_s = relay_timeout_s

        self._state = RelayState.IDLE
        self._state_since: Optional[Instant] = None
        # hardware state is unknown until a full command sequence succeeds
        self._dirty = True
        # target whose switch-on failed after the other relay was switched off
        self._retry_target: Optional[RelayState] = None

        self._tick_lock = asyncio.Lock()
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._executor: Optional[ThreadPoolExecutor] = None

        self.stats = LoopStats()

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def state_since(self) -> Optional[Instant]:
        return self._state_since

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def config(self) -> HysteresisConfig:
        return self._config

    @property
    def store(self) -> HistoryStore:
        return self._store

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # --- lifecycle ---

    async def initialize(self) -> None:
        """Force both relays off and start the IDLE dwell period now."""
        async with self._tick_lock:
            now = self._clock.now()
            self._state_since = now
            fault = await self._transition(RelayState.IDLE, now)
        if fault:
            logger.error("Could not switch relays off at startup, will retry on next tick: %s", fault)

    async def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        await self.initialize()
        self._task = asyncio.create_task(self._run(self._state_since.monotonic), name="control_loop")

    async def stop(self) -> None:
        """Stop at the next tick boundary, then leave both relays off."""
        self._stop.set()
        if self._task:
            await self._task
            self._task = None

        async with self._tick_lock:
            fault = await self._transition(RelayState.IDLE, self._clock.now())
        if fault:
            logger.error("Could not switch relays off on shutdown: %s", fault)
        else:
            logger.info("Relays off")

        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        self._sensor.close()

    async def _run(self, origin: float) -> None:
        interval = self._config.sample_interval.total_seconds()
        logger.info(
            "Control loop started (interval=%ss dwell=%ss target=%.1fC deadband=%.1fC capacity=%d)",
            interval,
            self._config.min_dwell.total_seconds(),
            self._config.target_inside_temp_c,
            self._config.deadband_c,
            self._store.capacity,
        )

        deadline = origin + interval
        while not self._stop.is_set():
            delay = deadline - self._clock.now().monotonic
            if delay > 0:
                # sleep with cancellation awareness
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=delay)
                    break
                except asyncio.TimeoutError:
                    pass

            try:
                await self.tick()
            except Exception as e:
                logger.exception("Control loop tick error: %s", e)

            deadline = self._next_deadline(deadline, interval)

        logger.info("Control loop stopped")

    def _next_deadline(self, deadline: float, interval: float) -> float:
        """Advance on the fixed grid; after an overrun fire once, not once per missed boundary."""
        now = self._clock.now().monotonic
        deadline += interval
        if now >= deadline:
            overrun = now - deadline
            skipped = int(overrun // interval)
            deadline += skipped * interval
            self.stats.overruns += 1
            self.stats.skipped_ticks += skipped
            logger.warning("Tick overran its interval by %.3fs, skipping %d tick(s)", overrun, skipped)
        return deadline

    # --- one tick ---

    async def tick(self) -> ControlDecision:
        async with self._tick_lock:
            if self._state_since is None:
                self._state_since = self._clock.now()

            # 1) Read sensor (never aborts the tick)
            reading = await self._read_sensor()

            # 2) Decide
            now = self._clock.now()
            desired = decide(self._state, self._state_since, now, reading, self._config)
            if self._retry_target is not None:
                band = desired_state(reading, self._config)
                if band == self._retry_target:
                    # only the relay whose switch-on failed skips the dwell
                    desired = band
                elif band is not None:
                    self._retry_target = None

            # 3) Apply (also re-issued while the hardware state is uncertain)
            fault: Optional[str] = None
            if desired != self._state or self._dirty:
                fault = await self._transition(desired, now)

            # 4) Record
            decision = ControlDecision(
                timestamp=now,
                reading=reading,
                desired_state=desired,
                applied_state=self._state,
                relay_fault=fault,
            )
            self._store.append(decision)
            self.stats.ticks += 1

            logger.debug(
                "tick: inside=%s outside=%s desired=%s applied=%s",
                reading.inside_temp_c,
                reading.outside_temp_c,
                desired.value,
                self._state.value,
            )
            return decision

    def _sensor_executor(self) -> ThreadPoolExecutor:
        # a single worker, so a hung read can never pile up parallel reads
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sensor")
        return self._executor

    async def _read_sensor(self) -> SensorReading:
        loop = asyncio.get_running_loop()
        try:
            sample = await asyncio.wait_for(
                loop.run_in_executor(self._sensor_executor(), self._sensor.read),
                timeout=self._sensor_timeout_s,
            )
        except asyncio.TimeoutError:
            error = f"Sensor read timed out after {self._sensor_timeout_s}s"
            logger.warning(error)
        except SensorFault as e:
            error = str(e) or type(e).__name__
            logger.warning("Sensor read FAILED: %s", error)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.exception("Sensor read FAILED: %s", e)
        else:
            reading = SensorReading.from_sample(self._clock.now(), sample, self._limits)
            if reading.error:
                self.stats.sensor_faults += 1
                logger.warning("Sensor reading partially invalid: %s", reading.error)
            return reading

        self.stats.sensor_faults += 1
        return SensorReading.fault(self._clock.now(), error)

    async def _transition(self, target: RelayState, now: Instant) -> Optional[str]:
        """
        Drive the relays to `target`. Every relay other than the target's is
        switched off first, each one attempted even if another fails; the
        target relay is only switched on once all others are confirmed off.
        Returns the fault text, or None.
        """
        prev = self._state
        faults: list[RelayFault] = []
        for relay_id in RelayId:
            if relay_id is not target.energized:
                try:
                    await self._set_relay(relay_id, False)
                except RelayFault as e:
                    faults.append(e)

        on_failed = False
        if faults:
            stuck = {e.relay_id for e in faults}
            applied = prev if prev.energized in stuck else RelayState.IDLE
        else:
            applied = RelayState.IDLE
            if target.energized is not None:
                try:
                    await self._set_relay(target.energized, True)
                    applied = target
                except RelayFault as e:
                    faults.append(e)
                    on_failed = True

        self._state = applied
        if applied != prev:
            self._state_since = now
            logger.info("Relay state %s -> %s", prev.value, applied.value)
        self._retry_target = target if on_failed else None
        self._dirty = bool(faults)

        if not faults:
            return None
        self.stats.relay_faults += len(faults)
        fault = "; ".join(str(e) for e in faults)
        logger.error(
            "Relay command failed on %s (desired=%s applied=%s): %s",
            self._relays.board_id,
            target.value,
            applied.value,
            fault,
        )
        return fault

    async def _set_relay(self, relay_id: RelayId, on: bool) -> None:
        try:
            await asyncio.wait_for(self._relays.set(relay_id, on), timeout=self._relay_timeout_s)
        except RelayFault as e:
            if e.relay_id is None:
                e.relay_id = relay_id
            raise
        except asyncio.TimeoutError as e:
            raise RelayFault(
                f"{relay_id.value} relay command timed out after {self._relay_timeout_s}s", relay_id=relay_id
            ) from e
        except Exception as e:
            logger.exception("Unexpected error from relay driver %s", self._relays.board_id)
            raise RelayFault(f"{relay_id.value} relay driver error: {e}", relay_id=relay_id) from e

    def status(self) -> dict:
        since = self._state_since
        return {
            "state": self._state.value,
            "state_since_utc": since.ts_utc.isoformat() if since else None,
            "dirty": self._dirty,
            "running": self.running,
            **asdict(self.stats),
        }
