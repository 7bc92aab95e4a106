from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import simpy

from storefront.core.clock import ClockLike, SimClock
from storefront.core.logging import get_logger
from storefront.features.sdk.service import SdkConnectionProvider
from storefront.features.sdk.types import (
    NotConfigured,
    PersonalizationConnection,
    PersonalizationError,
    SimGen,
)
from storefront.features.variants.normalize import (
    CurrencyTable,
    content_uid_for,
    short_aliases_from_raw,
)
from storefront.features.variants.types import (
    ATTR_COLOR,
    ATTR_COUNTRY,
    CONNECTION_FAILURE,
    NOT_CONFIGURED,
    TIMEOUT,
    IncompleteAttributesError,
    ResolvedVariantSet,
    VisitorAttributes,
    empty_variant_set,
)


@dataclass(frozen=True)
class ResolverConfig:
    """
    timeout_s bounds one resolve() round trip (connection + submission).
    <= 0 disables the timeout.
    """

    timeout_s: float = 5.0


_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True, slots=True)
class _Attempt:
    raw: tuple[str, ...] = ()
    reason: str | None = None


class VariantResolver:
    """
    Turns VisitorAttributes into a ResolvedVariantSet.

    One resolver per visitor session; the provider (and its connection) is shared
    by everything in the same client process.

    Submission ordering: every submission gets a sequence number. When an older
    submission completes after a newer one has already been applied, the
    connection holds stale attributes, so the newest attribute set is submitted
    again. The last requested set always ends up on the connection.
    """

    def __init__(
        self,
        *,
        env: simpy.Environment,
        provider: SdkConnectionProvider,
        table: CurrencyTable,
        cfg: ResolverConfig = ResolverConfig(),
        clock: ClockLike | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.env = env
        self.provider = provider
        self.table = table
        self.cfg = cfg
        self.clock = clock or SimClock(env, _EPOCH)
        self._logger = logger or get_logger(__name__)

        self._latest_seq = 0
        self._latest_attrs: VisitorAttributes | None = None
        self._applied_seq = 0

        self.submissions = 0
        self.restores = 0

    # ----------------------------
    # Public API
    # ----------------------------
    @staticmethod
    def validate(attributes: VisitorAttributes | Mapping[str, Any]) -> VisitorAttributes:
        attrs = (
            attributes
            if isinstance(attributes, VisitorAttributes)
            else VisitorAttributes.from_mapping(attributes)
        )
        if ATTR_COLOR in attrs and ATTR_COUNTRY not in attrs:
            raise IncompleteAttributesError(
                "color cannot be resolved without country (compound audiences need both)"
            )
        return attrs

    def resolve(self, attributes: VisitorAttributes | Mapping[str, Any]) -> SimGen:
        """
        Process body returning a ResolvedVariantSet. Never raises for SDK
        problems; caller errors (IncompleteAttributesError) raise immediately.
        """
        attrs = self.validate(attributes)
        return self._resolve(attrs)

    # ----------------------------
    # Internal helpers
    # ----------------------------
    def _resolve(self, attrs: VisitorAttributes) -> SimGen:
        self._latest_seq += 1
        seq = self._latest_seq
        self._latest_attrs = attrs

        work = self.env.process(self._round_trip(attrs, seq))
        if self.cfg.timeout_s > 0:
            timer = self.env.timeout(self.cfg.timeout_s)
            fired = yield work | timer
            if work not in fired:
                self._logger.warning(
                    "resolve_timeout",
                    extra={
                        "feature": "resolver",
                        "reason": TIMEOUT,
                        "attributes": attrs.as_dict(),
                    },
                )
                return empty_variant_set(attrs, resolved_at=self._now(), reason=TIMEOUT)
            attempt = fired[work]
        else:
            attempt = yield work

        if attempt.reason is not None:
            return empty_variant_set(attrs, resolved_at=self._now(), reason=attempt.reason)

        return self._build(attrs, attempt.raw)

    def _round_trip(self, attrs: VisitorAttributes, seq: int) -> SimGen:
        try:
            connection = yield from self.provider.get_connection()
        except NotConfigured:
            return _Attempt(reason=NOT_CONFIGURED)
        except PersonalizationError as exc:
            self._logger.warning(
                "resolve_sdk_unavailable",
                extra={"feature": "resolver", "reason": str(exc)},
            )
            return _Attempt(reason=CONNECTION_FAILURE)

        try:
            yield from self._submit(connection, attrs, seq)
            # the connection holds exactly this submission's attributes right now
            raw = tuple(str(r) for r in (connection.get_variant_identifiers() or []))
        except Exception as exc:  # noqa: BLE001 - vendor SDK may raise anything
            self._logger.warning(
                "attribute_submission_failed",
                extra={
                    "feature": "resolver",
                    "reason": str(exc),
                    "attributes": attrs.as_dict(),
                },
            )
            return _Attempt(reason=CONNECTION_FAILURE)

        self._after_submission(connection, seq)
        return _Attempt(raw=raw)

    def _submit(
        self, connection: PersonalizationConnection, attrs: VisitorAttributes, seq: int
    ) -> SimGen:
        self.submissions += 1
        yield from connection.set_attributes(attrs.as_dict())
        if seq > self._applied_seq:
            self._applied_seq = seq

    def _after_submission(self, connection: PersonalizationConnection, seq: int) -> None:
        latest = self._latest_attrs
        if latest is None or seq >= self._applied_seq or self._applied_seq != self._latest_seq:
            return
        # an older submission overwrote the newest, already-applied attributes
        self.env.process(self._restore(connection, latest, self._latest_seq))

    def _restore(
        self, connection: PersonalizationConnection, attrs: VisitorAttributes, seq: int
    ) -> SimGen:
        self.restores += 1
        self._logger.info(
            "attributes_restored",
            extra={"feature": "resolver", "attributes": attrs.as_dict()},
        )
        try:
            yield from connection.set_attributes(attrs.as_dict())
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "attribute_restore_failed",
                extra={"feature": "resolver", "reason": str(exc)},
            )
            return
        self._after_submission(connection, seq)

    def _build(self, attrs: VisitorAttributes, raw: tuple[str, ...]) -> ResolvedVariantSet:
        aliases = short_aliases_from_raw(raw)

        content_uids = frozenset()
        if aliases:
            uid = content_uid_for(self.table.currency_for_attributes(attrs), self.table)
            if uid is not None:
                content_uids = frozenset({uid})

        resolved = ResolvedVariantSet(
            short_aliases=aliases,
            content_uids=content_uids,
            source_attributes=attrs,
            resolved_at=self._now(),
            raw_identifiers=raw,
        )

        if not aliases:
            self._logger.warning(
                "no_variants_matched",
                extra={
                    "feature": "resolver",
                    "attributes": attrs.as_dict(),
                    "reason": "no audience matched; base content applies",
                },
            )
        else:
            self._logger.info(
                "variants_resolved",
                extra={
                    "feature": "resolver",
                    "attributes": attrs.as_dict(),
                    "aliases": resolved.sorted_aliases(),
                },
            )
        return resolved

    def _now(self) -> datetime:
        return self.clock.get_current_time()
