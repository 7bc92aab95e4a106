from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import simpy

from storefront.core.rng import RNG
from storefront.features.sdk.types import SimGen

from .types import SimulatedPersonalizeConfig


class SimulatedPersonalizeConnection:
    """
    In-process stand-in for the vendor connection.

    set_attributes replaces the whole attribute set when the call completes, so
    overlapping calls finish in completion order, not submission order.
    """

    def __init__(
        self,
        *,
        env: simpy.Environment,
        cfg: SimulatedPersonalizeConfig,
        rng: RNG,
        project_id: str,
    ) -> None:
        self.env = env
        self.cfg = cfg
        self.rng = rng
        self.project_id = project_id

        self.attributes: dict[str, str] = {}
        self.impressions: list[str] = []
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.set_calls = 0

    def set_attributes(self, attributes: Mapping[str, str]) -> SimGen:
        snapshot = {str(k): str(v) for k, v in attributes.items()}
        self.set_calls += 1
        yield self.env.timeout(self._latency(self.cfg.set_latency_s))
        if self.rng.random() < self.cfg.set_fail_p:
            raise ConnectionError("set_attributes: upstream unavailable")
        self.attributes = snapshot

    def get_variant_identifiers(self) -> list[str]:
        out: list[str] = []
        for audience in self.cfg.audiences:
            if not audience.matches(self.attributes):
                continue
            if self.cfg.alias_format == "short":
                out.append(audience.variant)
            else:
                out.append(f"cs_personalize_{audience.experience}_{audience.variant}")
        return out

    def record_impression(self, short_alias: str) -> SimGen:
        yield self.env.timeout(self._latency(self.cfg.impression_latency_s))
        if self.rng.random() < self.cfg.impression_fail_p:
            raise ConnectionError(f"impression {short_alias}: upstream unavailable")
        self.impressions.append(short_alias)

    def record_event(self, name: str, payload: Mapping[str, Any]) -> SimGen:
        yield self.env.timeout(self._latency(self.cfg.event_latency_s))
        self.events.append((name, dict(payload)))

    def _latency(self, base: float) -> float:
        if base <= 0:
            return 0.0
        if not self.cfg.jitter:
            return base
        return base * (0.5 + self.rng.random())


class SimulatedPersonalizeClient:
    def __init__(
        self, *, env: simpy.Environment, cfg: SimulatedPersonalizeConfig, rng: RNG
    ) -> None:
        self.env = env
        self.cfg = cfg
        self.rng = rng
        self.init_calls = 0

    def init(self, project_id: str) -> SimGen:
        self.init_calls += 1
        if self.cfg.init_latency_s > 0:
            yield self.env.timeout(self.cfg.init_latency_s)
        if self.rng.random() < self.cfg.init_fail_p:
            raise ConnectionError(f"project {project_id}: init handshake failed")
        return SimulatedPersonalizeConnection(
            env=self.env, cfg=self.cfg, rng=self.rng, project_id=project_id
        )
