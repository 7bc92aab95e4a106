from __future__ import annotations

import simpy

from storefront.core.rng import RNG
from storefront.features.sdk.types import SimGen

from .types import GeoBackendConfig


class SimulatedGeoBackend:
    """One IP lookup service answering with the visitor's true country."""

    def __init__(
        self, *, env: simpy.Environment, cfg: GeoBackendConfig, country: str, rng: RNG
    ) -> None:
        self.env = env
        self.cfg = cfg
        self.name = cfg.name
        self.country = country
        self.rng = rng
        self.calls = 0

    def lookup(self) -> SimGen:
        self.calls += 1
        if self.cfg.latency_s > 0:
            yield self.env.timeout(self.cfg.latency_s)
        if self.rng.random() < self.cfg.fail_p:
            raise ConnectionError(f"{self.name}: lookup failed")
        if self.rng.random() < self.cfg.empty_p:
            return None
        return self.country
