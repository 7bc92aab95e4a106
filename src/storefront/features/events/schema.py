from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

ALLOWED_EVENT_TYPES: set[str] = {
    # Run lifecycle
    "run_started",
    "run_finished",
    # Visitor session
    "session_start",
    "country_detected",
    "variants_resolved",
    "content_rendered",
    "manual_currency_override",
    "currency_reset",
    "color_selected",
    "session_end",
    # Analytics
    "impression",
    "impressions_batch",
    "product_viewed",
    "product_list_viewed",
}

# Events that are expected to be tied to a visitor
VISITOR_SCOPED_EVENT_TYPES: set[str] = ALLOWED_EVENT_TYPES - {"run_started", "run_finished"}


@dataclass(frozen=True, slots=True)
class Event:
    run_id: str
    event_id: str
    ts_utc: datetime
    sim_time_s: float

    event_type: str

    visitor_id: str | None = None
    page: str | None = None

    # render epoch the event belongs to (impressions, renders)
    epoch: int | None = None

    value_str: str | None = None
    payload_json: str | None = None

    def as_row(self) -> tuple:
        """
        Canonical DuckDB row, in events table column order.
        """
        return (
            self.run_id,
            self.event_id,
            self.ts_utc,
            float(self.sim_time_s),
            self.visitor_id,
            self.event_type,
            self.page,
            self.epoch,
            self.value_str,
            self.payload_json,
        )


def json_dumps(payload: dict[str, Any] | None) -> str | None:
    if payload is None:
        return None
    # Stable JSON for deterministic outputs/diffs
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
