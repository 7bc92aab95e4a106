from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

import simpy

from storefront.core.clock import ClockLike
from storefront.core.logging import get_logger
from storefront.features.sdk.service import SdkConnectionProvider
from storefront.features.sdk.types import (
    ImpressionDeliveryFailure,
    PersonalizationConnection,
    PersonalizationError,
    SimGen,
)
from storefront.features.variants.types import DisplayContext, ShortAlias, require_short_aliases

from .ledger import ImpressionLedger
from .types import (
    IMPRESSIONS_BATCH_EVENT,
    LIST_TYPES,
    PRODUCT_LIST_VIEWED_EVENT,
    PRODUCT_VIEWED_EVENT,
    AuditSink,
    ImpressionReport,
)


class ImpressionTracker:
    """
    Reports "variant shown" at most once per (alias, render epoch).

    record_impressions() is fire-and-forget: it returns a detached simpy process
    that never fails. Failures are logged and the alias stays eligible for a
    retry within the same epoch; successes are marked in the ledger so they are
    never double-counted.

    Callers must only call it after the content for the current epoch has been
    fetched (see storefront.features.storefront.service.StorefrontSession).
    """

    def __init__(
        self,
        *,
        env: simpy.Environment,
        provider: SdkConnectionProvider,
        ledger: ImpressionLedger,
        clock: ClockLike,
        visitor_id: str | None = None,
        audit: AuditSink | None = None,
        batch_events: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self.env = env
        self.provider = provider
        self.ledger = ledger
        self.clock = clock
        self.visitor_id = visitor_id
        self.audit = audit
        self.batch_events = batch_events
        self._logger = logger or get_logger(__name__)
        self.delivered = 0

    # ----------------------------
    # Public API
    # ----------------------------
    def record_impressions(
        self, short_aliases: Iterable[ShortAlias], context: DisplayContext | None = None
    ) -> simpy.events.Process:
        aliases = sorted(set(require_short_aliases(short_aliases)))
        epoch = self.ledger.epoch
        return self.env.process(self._record(aliases, context, epoch))

    def track_product_view(
        self,
        product_id: str,
        short_aliases: Iterable[ShortAlias],
        extra: dict[str, Any] | None = None,
    ) -> simpy.events.Process:
        aliases = sorted(set(require_short_aliases(short_aliases)))
        context = DisplayContext(
            page="product_detail", product_ids=(product_id,), extra=dict(extra or {})
        )
        payload = {"productId": product_id, **(extra or {})}
        return self.env.process(
            self._track_view(
                aliases, context, self.ledger.epoch, PRODUCT_VIEWED_EVENT, payload
            )
        )

    def track_product_list_view(
        self,
        short_aliases: Iterable[ShortAlias],
        product_count: int,
        list_type: str,
        extra: dict[str, Any] | None = None,
    ) -> simpy.events.Process:
        if list_type not in LIST_TYPES:
            raise ValueError(f"Unsupported list_type={list_type!r}. Allowed={sorted(LIST_TYPES)}")
        aliases = sorted(set(require_short_aliases(short_aliases)))
        context = DisplayContext(
            page=list_type,
            extra={"productCount": int(product_count), **(extra or {})},
        )
        payload = {"listType": list_type, "productCount": int(product_count), **(extra or {})}
        return self.env.process(
            self._track_view(
                aliases, context, self.ledger.epoch, PRODUCT_LIST_VIEWED_EVENT, payload
            )
        )

    def track_event(
        self, name: str, payload: dict[str, Any] | None = None
    ) -> simpy.events.Process:
        """Custom vendor event; skipped silently when the SDK is unavailable."""
        return self.env.process(self._track_event(name, dict(payload or {})))

    # ----------------------------
    # Internal helpers
    # ----------------------------
    def _track_event(self, name: str, payload: dict[str, Any]) -> SimGen:
        try:
            connection = yield from self.provider.get_connection()
        except PersonalizationError:
            return False

        body = {**payload, "timestamp": self.clock.get_current_time().isoformat()}
        try:
            yield from connection.record_event(name, body)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "event_failed",
                extra={"feature": "impressions", "event_type": name, "reason": str(exc)},
            )
            return False
        return True

    def _record(
        self, aliases: list[ShortAlias], context: DisplayContext | None, epoch: int
    ) -> SimGen:
        if not aliases:
            return ImpressionReport(epoch=epoch, reason="no_aliases")

        try:
            connection = yield from self.provider.get_connection()
        except PersonalizationError as exc:
            self._logger.warning(
                "impressions_skipped",
                extra={"feature": "impressions", "reason": str(exc), "epoch": epoch},
            )
            return ImpressionReport(epoch=epoch, skipped=tuple(aliases), reason="sdk_unavailable")

        sent: list[ShortAlias] = []
        skipped: list[ShortAlias] = []
        failed: list[ShortAlias] = []

        for alias in aliases:
            if not self.ledger.claim(alias, epoch):
                skipped.append(alias)
                continue
            try:
                yield from self._deliver(connection, alias)
            except ImpressionDeliveryFailure as exc:
                self.ledger.release(alias, epoch)
                failed.append(alias)
                self._logger.warning(
                    "impression_failed",
                    extra={
                        "feature": "impressions",
                        "alias": exc.alias,
                        "epoch": epoch,
                        "reason": exc.reason,
                    },
                )
                continue

            self.ledger.confirm(alias, epoch)
            sent.append(alias)
            self.delivered += 1
            self._audit(
                event_type="impression",
                page=None if context is None else context.page,
                epoch=epoch,
                value_str=alias.value,
            )

        batch_recorded = False
        if sent and context is not None and self.batch_events:
            batch_recorded = yield from self._record_batch(connection, aliases, context, epoch)

        self._logger.info(
            "impressions_recorded",
            extra={
                "feature": "impressions",
                "epoch": epoch,
                "aliases": [a.value for a in sent],
            },
        )
        return ImpressionReport(
            epoch=epoch,
            sent=tuple(sent),
            skipped=tuple(skipped),
            failed=tuple(failed),
            batch_recorded=batch_recorded,
        )

    def _deliver(self, connection: PersonalizationConnection, alias: ShortAlias) -> SimGen:
        try:
            yield from connection.record_impression(alias.value)
        except Exception as exc:  # noqa: BLE001 - vendor errors are opaque
            raise ImpressionDeliveryFailure(alias.value, str(exc)) from exc

    def _record_batch(
        self,
        connection: PersonalizationConnection,
        aliases: list[ShortAlias],
        context: DisplayContext,
        epoch: int,
    ) -> SimGen:
        values = [a.value for a in aliases]
        payload: dict[str, Any] = {
            "shortUids": values,
            "count": len(values),
            **context.as_payload(),
            "timestamp": self.clock.get_current_time().isoformat(),
        }
        try:
            yield from connection.record_event(IMPRESSIONS_BATCH_EVENT, payload)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "impressions_batch_failed",
                extra={"feature": "impressions", "reason": str(exc), "epoch": epoch},
            )
            return False

        self._audit(
            event_type="impressions_batch",
            page=context.page,
            epoch=epoch,
            payload={"aliases": values, "count": len(values)},
        )
        return True

    def _track_view(
        self,
        aliases: list[ShortAlias],
        context: DisplayContext,
        epoch: int,
        event_name: str,
        payload: dict[str, Any],
    ) -> SimGen:
        report = yield self.env.process(self._record(aliases, context, epoch))

        connection = self.provider.connection
        if connection is None:
            return report

        body = {
            **payload,
            "shortUids": [a.value for a in aliases],
            "timestamp": self.clock.get_current_time().isoformat(),
        }
        try:
            yield from connection.record_event(event_name, body)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "view_event_failed",
                extra={"feature": "impressions", "event_type": event_name, "reason": str(exc)},
            )
            return report

        self._audit(event_type=event_name, page=context.page, payload=payload)
        return report

    def _audit(self, **fields: Any) -> None:
        if self.audit is None:
            return
        try:
            self.audit.emit(visitor_id=self.visitor_id, **fields)
        except Exception as exc:  # noqa: BLE001 - audit must not break impressions
            self._logger.warning(
                "impression_audit_failed",
                extra={"feature": "impressions", "reason": str(exc)},
            )
