from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from storefront.features.backends.types import (
    ALIAS_FORMATS,
    Audience,
    CmsConfig,
    GeoBackendConfig,
    SimulatedPersonalizeConfig,
)

DEFAULT_COUNTRIES: dict[str, float] = {
    "India": 0.5,
    "United States of America": 0.4,
    "Germany": 0.1,
}


@dataclass(frozen=True)
class VisitorBehaviorConfig:
    manual_override_p: float = 0.25
    # second override shortly after the first (exercises stale resolutions)
    toggle_p: float = 0.1
    toggle_delay_s: float = 0.05
    color_pick_p: float = 0.3
    colors: tuple[str, ...] = ("Red", "Black", "Blue")
    reset_p: float = 0.05
    mean_think_time_s: float = 8.0


@dataclass(frozen=True)
class SimulationConfig:
    visitors: int = 10
    mean_interarrival_s: float = 30.0
    horizon_s: float = 3600.0
    countries: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_COUNTRIES))
    behavior: VisitorBehaviorConfig = VisitorBehaviorConfig()
    personalize: SimulatedPersonalizeConfig = SimulatedPersonalizeConfig()
    geo_backends: tuple[GeoBackendConfig, ...] = (GeoBackendConfig(name="primary"),)
    cms: CmsConfig = CmsConfig()


def _section(raw: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key) or {}
    if not isinstance(value, dict):
        raise TypeError(f"simulation.{key} must be a mapping/dict")
    return value


def _probability(section: str, value: Any) -> float:
    p = float(value)
    if not 0.0 <= p <= 1.0:
        raise ValueError(f"{section} must be within [0, 1], got {p}")
    return p


def parse_audiences(items: Any) -> tuple[Audience, ...]:
    if items is None:
        return ()
    if not isinstance(items, list):
        raise TypeError("simulation.personalize.audiences must be a list")
    out: list[Audience] = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise TypeError(f"simulation.personalize.audiences[{i}] must be a mapping/dict")
        match = item.get("match") or {}
        if not isinstance(match, dict) or not match:
            raise ValueError(f"simulation.personalize.audiences[{i}].match must be non-empty")
        out.append(
            Audience(
                experience=str(item["experience"]),
                variant=str(item["variant"]),
                match={str(k): str(v) for k, v in match.items()},
            )
        )
    return tuple(out)


def parse_simulation(raw: Mapping[str, Any] | None) -> SimulationConfig:
    """Parse the optional `simulation` YAML section. Missing keys take defaults."""
    raw = raw or {}
    if not isinstance(raw, dict):
        raise TypeError("simulation must be a mapping/dict")

    d = SimulationConfig()

    b = _section(raw, "behavior")
    db = d.behavior
    behavior = VisitorBehaviorConfig(
        manual_override_p=_probability(
            "behavior.manual_override_p", b.get("manual_override_p", db.manual_override_p)
        ),
        toggle_p=_probability("behavior.toggle_p", b.get("toggle_p", db.toggle_p)),
        toggle_delay_s=float(b.get("toggle_delay_s", db.toggle_delay_s)),
        color_pick_p=_probability("behavior.color_pick_p", b.get("color_pick_p", db.color_pick_p)),
        colors=tuple(str(c) for c in (b.get("colors") or db.colors)),
        reset_p=_probability("behavior.reset_p", b.get("reset_p", db.reset_p)),
        mean_think_time_s=float(b.get("mean_think_time_s", db.mean_think_time_s)),
    )

    p = _section(raw, "personalize")
    dp = d.personalize
    alias_format = str(p.get("alias_format", dp.alias_format))
    if alias_format not in ALIAS_FORMATS:
        raise ValueError(
            f"Unsupported alias_format={alias_format!r}. Allowed={sorted(ALIAS_FORMATS)}"
        )
    personalize = SimulatedPersonalizeConfig(
        audiences=parse_audiences(p.get("audiences")),
        alias_format=alias_format,
        init_latency_s=float(p.get("init_latency_s", dp.init_latency_s)),
        init_fail_p=_probability("personalize.init_fail_p", p.get("init_fail_p", dp.init_fail_p)),
        set_latency_s=float(p.get("set_latency_s", dp.set_latency_s)),
        set_fail_p=_probability("personalize.set_fail_p", p.get("set_fail_p", dp.set_fail_p)),
        impression_latency_s=float(p.get("impression_latency_s", dp.impression_latency_s)),
        impression_fail_p=_probability(
            "personalize.impression_fail_p", p.get("impression_fail_p", dp.impression_fail_p)
        ),
        event_latency_s=float(p.get("event_latency_s", dp.event_latency_s)),
        jitter=bool(p.get("jitter", dp.jitter)),
    )

    g = _section(raw, "geo")
    backends_raw = g.get("backends")
    if backends_raw is None:
        geo_backends = d.geo_backends
    else:
        if not isinstance(backends_raw, list) or not backends_raw:
            raise ValueError("simulation.geo.backends must be a non-empty list")
        geo_backends = tuple(
            GeoBackendConfig(
                name=str(item["name"]),
                latency_s=float(item.get("latency_s", 0.3)),
                fail_p=_probability("geo.fail_p", item.get("fail_p", 0.0)),
                empty_p=_probability("geo.empty_p", item.get("empty_p", 0.0)),
            )
            for item in backends_raw
        )

    c = _section(raw, "cms")
    catalog = c.get("catalog") or {}
    if not isinstance(catalog, dict):
        raise TypeError("simulation.cms.catalog must be a mapping/dict")
    cms = CmsConfig(
        latency_s=float(c.get("latency_s", d.cms.latency_s)),
        fail_p=_probability("cms.fail_p", c.get("fail_p", d.cms.fail_p)),
        catalog={str(k): list(v or []) for k, v in catalog.items()},
    )

    countries_raw = raw.get("countries")
    if countries_raw is None:
        countries = dict(d.countries)
    else:
        if not isinstance(countries_raw, dict) or not countries_raw:
            raise ValueError("simulation.countries must be a non-empty mapping")
        countries = {str(k): float(v) for k, v in countries_raw.items()}
        if any(w < 0 for w in countries.values()) or sum(countries.values()) <= 0:
            raise ValueError("simulation.countries weights must be >= 0 with a positive total")

    visitors = int(raw.get("visitors", d.visitors))
    if visitors < 0:
        raise ValueError("simulation.visitors must be >= 0")

    return SimulationConfig(
        visitors=visitors,
        mean_interarrival_s=float(raw.get("mean_interarrival_s", d.mean_interarrival_s)),
        horizon_s=float(raw.get("horizon_s", d.horizon_s)),
        countries=countries,
        behavior=behavior,
        personalize=personalize,
        geo_backends=geo_backends,
        cms=cms,
    )
