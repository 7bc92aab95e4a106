from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any

AUTO_RUN_ID = "auto"


def canonical_json(obj: dict[str, Any]) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def resolve_run_id(cfg_raw: dict[str, Any], configured: str, length: int = 12) -> str:
    """
    `configured` wins unless it is "auto". An auto run id is a hash of the whole
    config, so re-running the same YAML lands on the same run id.
    """
    if configured != AUTO_RUN_ID:
        return configured
    return hashlib.sha1(canonical_json(cfg_raw).encode("utf-8")).hexdigest()[:length]


@dataclass(slots=True)
class VisitorIds:
    """Visitor ids in arrival order, scoped to one run."""

    run_id: str
    issued: int = field(default=0, init=False)

    def next_visitor_id(self) -> str:
        self.issued += 1
        return f"visitor_{self.run_id}_{self.issued:06d}"
