from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import simpy

from storefront.core.logging import get_logger
from storefront.features.content.service import ContentFetchFacade, ContentPage
from storefront.features.currency.service import CurrencyStateMachine
from storefront.features.impressions.service import ImpressionTracker
from storefront.features.impressions.types import LIST_TYPES, AuditSink
from storefront.features.sdk.types import SimGen
from storefront.features.variants.types import DisplayContext, ResolvedVariantSet

PRODUCT_DETAIL_PAGE = "product_detail"


@dataclass(frozen=True)
class RenderResult:
    context: DisplayContext
    page: ContentPage
    variants: ResolvedVariantSet
    epoch: int
    currency: str
    prices: tuple[str, ...]
    impressions: simpy.events.Process | None = None


class StorefrontSession:
    """
    Renders pages for one visitor.

    Ordering per render:
      1. wait until the state machine is settled (detection + latest resolution)
      2. fetch content scoped to the resolved content uids
      3. only if variants did not change meanwhile, fire impressions (detached)

    A new page (different render key) advances the render epoch; re-rendering the
    same page does not, so its impressions are deduplicated.
    """

    def __init__(
        self,
        *,
        env: simpy.Environment,
        visitor_id: str,
        machine: CurrencyStateMachine,
        content: ContentFetchFacade,
        tracker: ImpressionTracker,
        audit: AuditSink | None = None,
        max_render_attempts: int = 5,
        logger: logging.Logger | None = None,
    ) -> None:
        self.env = env
        self.visitor_id = visitor_id
        self.machine = machine
        self.content = content
        self.tracker = tracker
        self.audit = audit
        self.max_render_attempts = int(max_render_attempts)
        self._logger = logger or get_logger(__name__)

        self._render_key: tuple[str, tuple[str, ...]] | None = None
        self._tracking: list[simpy.events.Process] = []
        self.renders = 0

    @property
    def ledger(self):
        return self.tracker.ledger

    def render(self, context: DisplayContext) -> SimGen:
        key = context.render_key()
        if self._render_key is not None and key != self._render_key:
            self.ledger.advance()
        self._render_key = key

        for _attempt in range(self.max_render_attempts):
            variants = yield from self.machine.wait_settled()
            epoch = self.ledger.epoch

            try:
                page = yield from self.content.fetch(context.content_type, variants.content_uids)
            except Exception as exc:  # noqa: BLE001 - CMS outage: nothing shown, nothing tracked
                self._logger.error(
                    "render_failed",
                    extra={"visitor_id": self.visitor_id, "reason": str(exc)},
                )
                return None

            if self.machine.current is variants and self.ledger.epoch == epoch:
                break

            # variants changed while content was in flight; render again
            self._logger.info(
                "render_superseded",
                extra={"visitor_id": self.visitor_id, "epoch": epoch},
            )
        else:
            self._logger.warning(
                "render_unstable",
                extra={"visitor_id": self.visitor_id, "reason": "variants kept changing"},
            )
            return None

        self.renders += 1
        # base content carries default-currency prices
        if page.is_personalized:
            currency = self.machine.currency
        else:
            currency = self.machine.table.default_currency
        prices = tuple(page.prices(currency))
        self._audit(
            event_type="content_rendered",
            page=context.page,
            epoch=epoch,
            value_str=currency,
            payload={
                "personalized": page.is_personalized,
                "contentUids": list(page.variant_uids),
                "entries": len(page.entries),
            },
        )

        impressions = self._track(context, variants, page)
        if impressions is not None:
            self._tracking.append(impressions)
        return RenderResult(
            context=context,
            page=page,
            variants=variants,
            epoch=epoch,
            currency=currency,
            prices=prices,
            impressions=impressions,
        )

    def settle_tracking(self) -> simpy.events.Condition:
        """Fires once every impression process started by this session has finished."""
        self._tracking = [p for p in self._tracking if p.is_alive]
        return self.env.all_of(self._tracking)

    def _track(
        self, context: DisplayContext, variants: ResolvedVariantSet, page: ContentPage
    ) -> simpy.events.Process | None:
        if variants.content_uids and not page.is_personalized:
            # variant content failed and base content was shown instead
            self._logger.warning(
                "impressions_withheld",
                extra={"visitor_id": self.visitor_id, "reason": "base_content_fallback"},
            )
            return None
        if context.page == PRODUCT_DETAIL_PAGE and len(context.product_ids) == 1:
            return self.tracker.track_product_view(
                context.product_ids[0], variants.short_aliases, extra=dict(context.extra)
            )
        if context.page in LIST_TYPES:
            return self.tracker.track_product_list_view(
                variants.short_aliases,
                product_count=len(page.entries),
                list_type=context.page,
                extra=dict(context.extra),
            )
        return self.tracker.record_impressions(variants.short_aliases, context)

    def _audit(self, **fields: Any) -> None:
        if self.audit is None:
            return
        try:
            self.audit.emit(visitor_id=self.visitor_id, **fields)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "render_audit_failed",
                extra={"visitor_id": self.visitor_id, "reason": str(exc)},
            )
