from __future__ import annotations

import logging
from typing import Any

import simpy

from storefront.core.logging import get_logger
from storefront.features.geolocation.service import AttributeOracle
from storefront.features.impressions.ledger import ImpressionLedger
from storefront.features.impressions.types import AuditSink
from storefront.features.preferences.service import CurrencyPreference, PreferenceStore
from storefront.features.resolver.service import VariantResolver
from storefront.features.sdk.types import GeolocationFailure, SimGen
from storefront.features.variants.normalize import CurrencyTable
from storefront.features.variants.types import (
    ATTR_COLOR,
    IncompleteAttributesError,
    ResolvedVariantSet,
    VisitorAttributes,
)

from .types import (
    AnalyticsLike,
    CurrencyState,
    Detecting,
    PersonalizationSnapshot,
    ResolvedAuto,
    ResolvedManual,
    Uninitialized,
)

MANUAL_OVERRIDE_EVENT = "manual_currency_override"


class CurrencyStateMachine:
    """
    Per-visitor currency/attribute state. Decides when resolution re-runs.

      Uninitialized -> Detecting -> ResolvedAuto <-> ResolvedManual
      Uninitialized -> ResolvedManual            (persisted manual choice)
      ResolvedManual -> Detecting -> ResolvedAuto (reset_to_auto)

    Every change of the effective attribute set invalidates `current`, advances
    the render epoch and starts a new resolution generation. A resolution that
    lands after a newer one was requested is discarded.

    All transition methods are process bodies (env.process / yield from).
    """

    def __init__(
        self,
        *,
        env: simpy.Environment,
        visitor_id: str,
        resolver: VariantResolver,
        oracle: AttributeOracle,
        table: CurrencyTable,
        ledger: ImpressionLedger,
        default_country: str,
        detect_timeout_s: float = 3.0,
        preferences: PreferenceStore | None = None,
        analytics: AnalyticsLike | None = None,
        audit: AuditSink | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.env = env
        self.visitor_id = visitor_id
        self.resolver = resolver
        self.oracle = oracle
        self.table = table
        self.ledger = ledger
        self.default_country = default_country
        self.detect_timeout_s = float(detect_timeout_s)
        self.preferences = preferences
        self.analytics = analytics
        self.audit = audit
        self._logger = logger or get_logger(__name__)

        self._state: CurrencyState = Uninitialized()
        self.detected_country: str | None = None
        self.attributes: VisitorAttributes | None = None
        self.current: ResolvedVariantSet | None = None

        self._generation = 0
        self._is_loading = False
        self._settled = env.event()

        self.discarded = 0

    # ----------------------------
    # Read side
    # ----------------------------
    @property
    def state(self) -> CurrencyState:
        return self._state

    @property
    def currency(self) -> str:
        if isinstance(self._state, ResolvedAuto | ResolvedManual):
            return self._state.currency
        return self.table.default_currency

    @property
    def is_detecting(self) -> bool:
        return isinstance(self._state, Uninitialized | Detecting)

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def is_settled(self) -> bool:
        return not self.is_detecting and not self._is_loading

    def snapshot(self) -> PersonalizationSnapshot:
        aliases = () if self.current is None else tuple(self.current.sorted_aliases())
        return PersonalizationSnapshot(
            currency=self.currency,
            detected_country=self.detected_country,
            short_aliases=aliases,
            is_detecting=self.is_detecting,
            is_loading=self._is_loading,
            mode=self._state.mode,
            epoch=self.ledger.epoch,
        )

    def wait_settled(self) -> SimGen:
        """Suspends until detection and the latest resolution have landed."""
        while not self.is_settled:
            yield self._settled
        return self.current

    # ----------------------------
    # Transitions
    # ----------------------------
    def start(self) -> SimGen:
        if not isinstance(self._state, Uninitialized):
            raise RuntimeError(f"start() called twice (state={self._state.mode})")

        pref = self._load_preference()
        if pref is not None:
            self._logger.info(
                "manual_currency_restored",
                extra={"visitor_id": self.visitor_id, "state": "manual"},
            )
            return (yield from self._to_manual(pref.manual_currency, persist=False))

        return (yield from self._detect_and_resolve())

    def set_currency(self, currency: str) -> SimGen:
        code = currency.strip().upper()
        if code not in self.table.currency_country:
            raise ValueError(f"Unsupported currency={currency!r}. Allowed={self.table.currencies}")

        previous = self.currency
        result = yield from self._to_manual(code, persist=True)

        payload = {
            "previousCurrency": previous,
            "newCurrency": code,
            "detectedCountry": self.detected_country,
        }
        if self.analytics is not None:
            self.analytics.track_event(MANUAL_OVERRIDE_EVENT, payload)
        self._audit(event_type=MANUAL_OVERRIDE_EVENT, value_str=code, payload=payload)
        return result

    def select_color(self, color: str) -> SimGen:
        if self.attributes is None or not isinstance(self._state, ResolvedAuto | ResolvedManual):
            raise IncompleteAttributesError(
                "color can only be selected once the visitor's country is resolved"
            )
        attrs = self.attributes.with_attribute(ATTR_COLOR, color)
        self._audit(event_type="color_selected", value_str=color)
        return (yield from self._apply(attrs, self._state))

    def reset_to_auto(self) -> SimGen:
        """Forget the manual choice and detect the country again."""
        if self.preferences is not None:
            self.preferences.clear(self.visitor_id)
        self._audit(event_type="currency_reset", value_str=self.currency)
        return (yield from self._detect_and_resolve())

    # ----------------------------
    # Internal helpers
    # ----------------------------
    def _to_manual(self, currency: str, *, persist: bool) -> SimGen:
        if persist and self.preferences is not None:
            self.preferences.save(self.visitor_id, CurrencyPreference(manual_currency=currency))

        country = self.table.country_for_currency(currency)
        attrs = VisitorAttributes.of(country=country, currency=currency)
        if self.attributes is not None and ATTR_COLOR in self.attributes:
            attrs = attrs.with_attribute(ATTR_COLOR, self.attributes[ATTR_COLOR])
        return (yield from self._apply(attrs, ResolvedManual(country=country, currency=currency)))

    def _detect_and_resolve(self) -> SimGen:
        self._state = Detecting()
        self._begin_loading()
        generation = self._generation

        country = yield from self._detect()

        if generation != self._generation or not isinstance(self._state, Detecting):
            # a manual choice arrived while detecting
            return self.current

        self.detected_country = country
        self._audit(event_type="country_detected", value_str=country)

        currency = self.table.currency_for_country(country)
        attrs = VisitorAttributes.of(country=country)
        if self.attributes is not None and ATTR_COLOR in self.attributes:
            attrs = attrs.with_attribute(ATTR_COLOR, self.attributes[ATTR_COLOR])
        return (yield from self._apply(attrs, ResolvedAuto(country=country, currency=currency)))

    def _detect(self) -> SimGen:
        try:
            return (yield from self._detect_country())
        except GeolocationFailure as exc:
            self._logger.warning(
                "geolocation_fallback",
                extra={
                    "visitor_id": self.visitor_id,
                    "reason": exc.reason,
                    "attributes": {"country": self.default_country},
                },
            )
            return self.default_country

    def _detect_country(self) -> SimGen:
        proc = self.env.process(self._safe_detect())
        if self.detect_timeout_s > 0:
            fired = yield proc | self.env.timeout(self.detect_timeout_s)
            if proc not in fired:
                raise GeolocationFailure("timeout")
            country = fired[proc]
        else:
            country = yield proc

        if not country:
            raise GeolocationFailure("no_country")
        return country

    def _safe_detect(self) -> SimGen:
        try:
            country = yield from self.oracle.detect_country()
        except Exception as exc:  # noqa: BLE001 - oracle is an opaque external
            self._logger.warning(
                "geolocation_failed",
                extra={"visitor_id": self.visitor_id, "reason": str(exc)},
            )
            return None
        return country or None

    def _apply(self, attrs: VisitorAttributes, next_state: CurrencyState) -> SimGen:
        if (
            attrs == self.attributes
            and next_state == self._state
            and self.current is not None
            and not self.current.is_degraded
            and not self._is_loading
        ):
            return self.current

        self._state = next_state
        self.attributes = attrs
        self.current = None
        epoch = self.ledger.advance()
        self._begin_loading()
        generation = self._generation

        self._logger.info(
            "attributes_changed",
            extra={
                "visitor_id": self.visitor_id,
                "state": next_state.mode,
                "epoch": epoch,
                "attributes": attrs.as_dict(),
            },
        )

        result = yield self.env.process(self.resolver.resolve(attrs))

        if generation != self._generation:
            self.discarded += 1
            self._logger.info(
                "stale_resolution_discarded",
                extra={
                    "visitor_id": self.visitor_id,
                    "attributes": attrs.as_dict(),
                    "reason": "superseded",
                },
            )
            return None

        self.current = result
        self._finish_loading()
        self._audit(
            event_type="variants_resolved",
            epoch=epoch,
            value_str=result.degraded_reason,
            payload={
                "attributes": attrs.as_dict(),
                "aliases": result.sorted_aliases(),
                "contentUids": result.sorted_content_uids(),
            },
        )
        return result

    def _begin_loading(self) -> None:
        self._generation += 1
        self._is_loading = True
        if self._settled.triggered:
            self._settled = self.env.event()

    def _finish_loading(self) -> None:
        self._is_loading = False
        if not self._settled.triggered:
            self._settled.succeed(self.current)

    def _load_preference(self) -> CurrencyPreference | None:
        if self.preferences is None:
            return None
        pref = self.preferences.load(self.visitor_id)
        if pref is None or not pref.is_manual:
            return None
        if pref.manual_currency not in self.table.currency_country:
            self._logger.warning(
                "manual_currency_ignored",
                extra={"visitor_id": self.visitor_id, "reason": pref.manual_currency},
            )
            return None
        return pref

    def _audit(self, **fields: Any) -> None:
        if self.audit is None:
            return
        try:
            self.audit.emit(visitor_id=self.visitor_id, **fields)
        except Exception as exc:  # noqa: BLE001 - audit must not break the session
            self._logger.warning(
                "currency_audit_failed",
                extra={"visitor_id": self.visitor_id, "reason": str(exc)},
            )
