from __future__ import annotations
from typing import Protocol, runtime_checkable

from .models import RelayId


@runtime_checkable
class RelayDriver(Protocol):
    """Two-relay board. Only the control loop may call `set`."""

    board_id: str

    async def set(self, relay_id: RelayId, on: bool) -> None:
        """Switch one relay. Idempotent. Raise RelayFault on failure."""
        ...

    async def close(self) -> None:
        ...
