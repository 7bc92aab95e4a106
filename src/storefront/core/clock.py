from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, Protocol


class ClockLike(Protocol):
    def get_current_time(self) -> datetime: ...


class SimClock:
    """
    Authoritative UTC timestamps for a simpy environment.
    env.now is seconds since start_dt.
    """

    def __init__(self, env: Any, start_dt: datetime) -> None:
        self.env = env
        if start_dt.tzinfo is None:
            start_dt = start_dt.replace(tzinfo=UTC)
        else:
            start_dt = start_dt.astimezone(UTC)
        self.start_dt = start_dt

    def get_current_time(self) -> datetime:
        return self.start_dt + timedelta(seconds=float(self.env.now))
