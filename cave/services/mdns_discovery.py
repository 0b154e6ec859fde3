from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from zeroconf import ServiceStateChange
from zeroconf.asyncio import AsyncServiceBrowser, AsyncZeroconf

logger = logging.getLogger(__name__)

EWELINK_SERVICE = "_ewelink._tcp.local."


@dataclass
class DiscoveredSwitch:
    device_id: str
    ip: Optional[str]
    port: Optional[int]
    hostname: Optional[str]
    type: str = ""
    txt: Dict[str, str] = field(default_factory=dict)


def _decode_txt(properties: Dict[Any, Any]) -> Dict[str, str]:
    txt: Dict[str, str] = {}
    for k, v in (properties or {}).items():
        key = k.decode() if isinstance(k, bytes) else str(k)
        val = v.decode() if isinstance(v, bytes) else str(v)
        txt[key] = val
    return txt


async def discover_sonoff_devices(timeout: float = 3.0) -> List[DiscoveredSwitch]:
    """Browse mDNS for Sonoff eWeLink DIY-mode switches.

    Used when wiring up the cooling/heating relays; the control loop never
    calls it.
    """
    found_names: set[str] = set()
    zc = AsyncZeroconf()

    def on_state_change(
        zeroconf: Any, service_type: str, name: str, state_change: ServiceStateChange
    ) -> None:
        if state_change is ServiceStateChange.Added:
            found_names.add(name)

    browser = AsyncServiceBrowser(zc.zeroconf, EWELINK_SERVICE, handlers=[on_state_change])
    devices: List[DiscoveredSwitch] = []
    try:
        await asyncio.sleep(timeout)

        for name in sorted(found_names):
            info = await zc.zeroconf.async_get_service_info(EWELINK_SERVICE, name)
            if info is None:
                continue
            addresses = info.parsed_addresses()
            txt = _decode_txt(info.properties)
            devices.append(DiscoveredSwitch(
                device_id=txt.get("id", ""),
                ip=addresses[0] if addresses else None,
                port=info.port,
                hostname=info.server,
                type=txt.get("type", ""),
                txt=txt,
            ))
    finally:
        await browser.async_cancel()
        await zc.async_close()

    logger.info("mDNS discovery found %d Sonoff device(s)", len(devices))
    return devices
