from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from storefront.features.variants.types import ShortAlias

IMPRESSIONS_BATCH_EVENT = "variant_impressions_tracked"
PRODUCT_VIEWED_EVENT = "product_viewed"
PRODUCT_LIST_VIEWED_EVENT = "product_list_viewed"

LIST_TYPES: frozenset[str] = frozenset({"homepage", "category", "search", "all"})


class AuditSink(Protocol):
    """
    Local audit trail. Matches storefront.features.events.service.EventService.emit.
    """

    def emit(
        self,
        *,
        event_type: str,
        visitor_id: str | None = None,
        page: str | None = None,
        epoch: int | None = None,
        value_str: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Any: ...


@dataclass(frozen=True)
class ImpressionReport:
    """Outcome of one record_impressions() batch (the detached process value)."""

    epoch: int
    sent: tuple[ShortAlias, ...] = ()
    skipped: tuple[ShortAlias, ...] = ()
    failed: tuple[ShortAlias, ...] = ()
    batch_recorded: bool = False
    reason: str | None = None
