from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import httpx

from ..domain.errors import RelayFault
from ..domain.models import RelayId

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SonoffDevice:
    ip: str
    device_id: str
    port: int = 8081

    @property
    def base_url(self) -> str:
        return f"http://{self.ip}:{self.port}"


class SonoffRelayBoard:
    """Two Sonoff BASICR3 switches in eWeLink DIY mode, one per relay."""

    board_id = "sonoff_pair"

    def __init__(
        self,
        devices: Dict[RelayId, SonoffDevice],
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        missing = set(RelayId) - set(devices)
        if missing:
            raise ValueError(f"No Sonoff device configured for: {sorted(r.value for r in missing)}")
        self._devices = dict(devices)
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def set(self, relay_id: RelayId, on: bool) -> None:
        dev = self._devices[relay_id]
        switch_val = "on" if on else "off"
        try:
            resp = await self._client.post(
                f"{dev.base_url}/zeroconf/switch",
                json={
                    "deviceid": dev.device_id,
                    "data": {"switch": switch_val},
                },
            )
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RelayFault(
                f"Sonoff {relay_id.value} relay switch={switch_val} failed: {e}", relay_id=relay_id
            ) from e

        # DIY mode answers 200 with a non-zero "error" field on rejection
        error = body.get("error", 0) if isinstance(body, dict) else body
        if error != 0:
            raise RelayFault(
                f"Sonoff {relay_id.value} relay rejected switch={switch_val}: error={error}",
                relay_id=relay_id,
            )
        logger.info("Sonoff %s set_state=%s", relay_id.value, switch_val)

    async def close(self) -> None:
        await self._client.aclose()
