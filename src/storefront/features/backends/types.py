from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

ALIAS_FORMATS: frozenset[str] = frozenset({"short", "composite"})


@dataclass(frozen=True)
class Audience:
    """
    One experience variant and the attribute values a visitor must carry.
    Every key in `match` must be present and equal (case-insensitive).
    """

    experience: str
    variant: str
    match: dict[str, str] = field(default_factory=dict)

    def matches(self, attributes: Mapping[str, str]) -> bool:
        for key, want in self.match.items():
            have = attributes.get(key)
            if have is None or _fold(have) != _fold(want):
                return False
        return True


@dataclass(frozen=True)
class SimulatedPersonalizeConfig:
    audiences: tuple[Audience, ...] = ()
    # "composite" answers cs_personalize_<experience>_<variant>, "short" answers <variant>
    alias_format: str = "composite"
    init_latency_s: float = 0.4
    init_fail_p: float = 0.0
    set_latency_s: float = 0.2
    set_fail_p: float = 0.0
    impression_latency_s: float = 0.05
    impression_fail_p: float = 0.0
    event_latency_s: float = 0.05
    # latency * U(0.5, 1.5) per call; lets submissions complete out of order
    jitter: bool = True


@dataclass(frozen=True)
class GeoBackendConfig:
    name: str
    latency_s: float = 0.3
    fail_p: float = 0.0
    empty_p: float = 0.0


@dataclass(frozen=True)
class CmsConfig:
    latency_s: float = 0.1
    fail_p: float = 0.0
    catalog: dict[str, list[dict[str, Any]]] = field(default_factory=dict)


def _fold(value: str) -> str:
    return " ".join(str(value).strip().lower().split())
