from __future__ import annotations
import logging
import threading
from collections import deque
from typing import Deque, Dict, Set, Tuple

from ..domain.errors import RelayFault
from ..domain.models import RelayId

logger = logging.getLogger(__name__)


class SimulatedRelayBoard:
    """In-memory relay pair. Keeps a command log and can be told to fail."""

    board_id = "relays_sim_01"

    def __init__(self, command_log_size: int = 1000) -> None:
        self._lock = threading.Lock()
        self._states: Dict[RelayId, bool] = {r: False for r in RelayId}
        self._faulty: Set[RelayId] = set()
        # most recent commands only
        self.commands: Deque[Tuple[RelayId, bool]] = deque(maxlen=command_log_size)
        self.max_energized = 0

    def is_on(self, relay_id: RelayId) -> bool:
        with self._lock:
            return self._states[relay_id]

    def states(self) -> Dict[RelayId, bool]:
        with self._lock:
            return dict(self._states)

    def fail(self, relay_id: RelayId, failing: bool = True) -> None:
        with self._lock:
            if failing:
                self._faulty.add(relay_id)
            else:
                self._faulty.discard(relay_id)

    async def set(self, relay_id: RelayId, on: bool) -> None:
        with self._lock:
            if relay_id in self._faulty:
                raise RelayFault(f"Simulated fault on {relay_id.value} relay", relay_id=relay_id)
            self.commands.append((relay_id, bool(on)))
            if self._states[relay_id] == bool(on):
                return
            self._states[relay_id] = bool(on)
            self.max_energized = max(self.max_energized, sum(self._states.values()))
        logger.info("RELAY %s set_state=%s", relay_id.value, on)

    async def close(self) -> None:
        pass
