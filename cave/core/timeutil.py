import time
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from ..domain.models import Instant


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def now_local(tz_name: str) -> datetime:
    return now_utc().astimezone(ZoneInfo(tz_name))


class SystemClock:
    """Wall clock plus monotonic clock, read together."""

    def now(self) -> Instant:
        return Instant(ts_utc=now_utc(), monotonic=time.monotonic())
