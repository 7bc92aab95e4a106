from __future__ import annotations

from typing import Any

import simpy

from storefront.core.rng import RNG
from storefront.features.sdk.types import SimGen

from .types import CmsConfig


class InMemoryCms:
    """
    Catalog-backed CMS. Entries may carry `variants: {uid: {field: value}}`;
    the first requested uid an entry knows overrides its fields.
    """

    def __init__(self, *, env: simpy.Environment, cfg: CmsConfig, rng: RNG | None = None) -> None:
        self.env = env
        self.cfg = cfg
        self.rng = rng
        self.requests: list[tuple[str, tuple[str, ...]]] = []

    def fetch_entries(self, content_type: str, *, variant_uids: list[str]) -> SimGen:
        self.requests.append((content_type, tuple(variant_uids)))
        if self.cfg.latency_s > 0:
            yield self.env.timeout(self.cfg.latency_s)
        if self.rng is not None and self.rng.random() < self.cfg.fail_p:
            raise ConnectionError(f"cms: {content_type} query failed")

        out: list[dict[str, Any]] = []
        for entry in self.cfg.catalog.get(content_type, []):
            item = {k: v for k, v in entry.items() if k != "variants"}
            overrides = entry.get("variants") or {}
            for uid in variant_uids:
                if uid in overrides:
                    item.update(overrides[uid])
                    item["variant_uid"] = uid
                    break
            out.append(item)
        return out
