from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class Uninitialized:
    mode = "uninitialized"


@dataclass(frozen=True, slots=True)
class Detecting:
    mode = "detecting"


@dataclass(frozen=True, slots=True)
class ResolvedAuto:
    """Currency derived from the detected (or default) country."""

    country: str
    currency: str
    mode = "auto"


@dataclass(frozen=True, slots=True)
class ResolvedManual:
    """Currency chosen by the visitor; country comes from the inverse mapping."""

    country: str
    currency: str
    mode = "manual"


CurrencyState = Uninitialized | Detecting | ResolvedAuto | ResolvedManual


@dataclass(frozen=True)
class PersonalizationSnapshot:
    """Read-only view for the page layer."""

    currency: str
    detected_country: str | None
    short_aliases: tuple[str, ...]
    is_detecting: bool
    is_loading: bool
    mode: str
    epoch: int


class AnalyticsLike(Protocol):
    """Best-effort vendor events (ImpressionTracker.track_event matches)."""

    def track_event(self, name: str, payload: dict[str, Any] | None = None) -> Any: ...
