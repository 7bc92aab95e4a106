from __future__ import annotations

import pytest
import simpy

from storefront.core.config import (
    DEFAULT_CONTENT_UIDS,
    DEFAULT_COUNTRY_CURRENCY,
    DEFAULT_CURRENCY_COUNTRY,
)
from storefront.features.backends.types import Audience
from storefront.features.resolver.service import ResolverConfig, VariantResolver
from storefront.features.sdk.service import SdkConnectionProvider
from storefront.features.variants.normalize import CurrencyTable
from storefront.features.variants.types import (
    CONNECTION_FAILURE,
    NOT_CONFIGURED,
    TIMEOUT,
    ContentVariantUid,
    IncompleteAttributesError,
    ShortAlias,
    VisitorAttributes,
)

AUDIENCES = (
    Audience(experience="7", variant="0", match={"country": "India"}),
    Audience(experience="7", variant="1", match={"country": "United States of America"}),
    Audience(experience="9", variant="2", match={"country": "India", "color": "Red"}),
)

INR_UID = ContentVariantUid(DEFAULT_CONTENT_UIDS["INR"])
USD_UID = ContentVariantUid(DEFAULT_CONTENT_UIDS["USD"])


class ScriptedConnection:
    """set_attributes latencies are popped in call order (default 0.1)."""

    def __init__(self, env: simpy.Environment, *, latencies=None, fail: bool = False):
        self.env = env
        self.latencies = list(latencies or [])
        self.fail = fail
        self.attributes: dict[str, str] = {}
        self.submitted: list[dict[str, str]] = []

    def set_attributes(self, attributes):
        snapshot = dict(attributes)
        delay = self.latencies.pop(0) if self.latencies else 0.1
        yield self.env.timeout(delay)
        if self.fail:
            raise ConnectionError("upstream 503")
        self.attributes = snapshot
        self.submitted.append(snapshot)

    def get_variant_identifiers(self):
        return [
            f"cs_personalize_{a.experience}_{a.variant}"
            for a in AUDIENCES
            if a.matches(self.attributes)
        ]

    def record_impression(self, short_alias):
        yield self.env.timeout(0)

    def record_event(self, name, payload):
        yield self.env.timeout(0)


class StaticClient:
    def __init__(self, env, connection, *, fail: bool = False):
        self.env = env
        self.connection = connection
        self.fail = fail

    def init(self, project_id):
        yield self.env.timeout(0)
        if self.fail:
            raise ConnectionError("no route to host")
        return self.connection


def make_table() -> CurrencyTable:
    return CurrencyTable(
        content_uids=DEFAULT_CONTENT_UIDS,
        country_currency=DEFAULT_COUNTRY_CURRENCY,
        currency_country=DEFAULT_CURRENCY_COUNTRY,
    )


def make_resolver(
    env: simpy.Environment,
    connection: ScriptedConnection,
    *,
    project_id: str | None = "proj",
    init_fails: bool = False,
    timeout_s: float = 5.0,
) -> VariantResolver:
    provider = SdkConnectionProvider(
        env=env,
        client=StaticClient(env, connection, fail=init_fails),
        project_id=project_id,
    )
    return VariantResolver(
        env=env, provider=provider, table=make_table(), cfg=ResolverConfig(timeout_s=timeout_s)
    )


def run_resolve(env, resolver, attrs):
    proc = env.process(resolver.resolve(attrs))
    env.run()
    return proc.value


def test_country_resolves_aliases_and_content_uid():
    env = simpy.Environment()
    conn = ScriptedConnection(env)
    resolver = make_resolver(env, conn)

    out = run_resolve(env, resolver, VisitorAttributes.of(country="India"))

    assert out.short_aliases == frozenset({ShortAlias("0")})
    assert out.content_uids == frozenset({INR_UID})
    assert out.raw_identifiers == ("cs_personalize_7_0",)
    assert not out.is_degraded


def test_resolution_is_idempotent():
    env = simpy.Environment()
    resolver = make_resolver(env, ScriptedConnection(env))
    attrs = VisitorAttributes.of(country="United States of America")

    first = run_resolve(env, resolver, attrs)
    second = run_resolve(env, resolver, attrs)

    assert first.short_aliases == second.short_aliases == frozenset({ShortAlias("1")})
    assert first.content_uids == second.content_uids == frozenset({USD_UID})


def test_compound_attributes_are_submitted_together():
    env = simpy.Environment()
    conn = ScriptedConnection(env)
    resolver = make_resolver(env, conn)

    out = run_resolve(env, resolver, VisitorAttributes.of(country="India", color="Red"))

    assert conn.submitted == [{"country": "India", "color": "Red"}]
    assert out.short_aliases == frozenset({ShortAlias("0"), ShortAlias("2")})


def test_color_without_country_is_rejected_before_any_call():
    env = simpy.Environment()
    conn = ScriptedConnection(env)
    resolver = make_resolver(env, conn)

    with pytest.raises(IncompleteAttributesError):
        resolver.resolve(VisitorAttributes.of(color="Red"))

    assert resolver.submissions == 0


def test_no_matching_audience_is_a_valid_empty_result():
    env = simpy.Environment()
    resolver = make_resolver(env, ScriptedConnection(env))

    out = run_resolve(env, resolver, VisitorAttributes.of(country="Germany"))

    assert out.is_empty
    assert not out.is_degraded


def test_manual_currency_selects_its_content_uid():
    env = simpy.Environment()
    resolver = make_resolver(env, ScriptedConnection(env))

    out = run_resolve(
        env, resolver, VisitorAttributes.of(country="United States of America", currency="EUR")
    )

    assert out.short_aliases == frozenset({ShortAlias("1")})
    assert out.content_uids == frozenset({ContentVariantUid(DEFAULT_CONTENT_UIDS["EUR"])})


def test_not_configured_degrades_to_empty():
    env = simpy.Environment()
    resolver = make_resolver(env, ScriptedConnection(env), project_id=None)

    out = run_resolve(env, resolver, VisitorAttributes.of(country="India"))

    assert out.is_empty
    assert out.degraded_reason == NOT_CONFIGURED


def test_init_failure_degrades_to_empty():
    env = simpy.Environment()
    resolver = make_resolver(env, ScriptedConnection(env), init_fails=True)

    out = run_resolve(env, resolver, VisitorAttributes.of(country="India"))

    assert out.is_empty
    assert out.degraded_reason == CONNECTION_FAILURE


def test_submission_failure_degrades_to_empty():
    env = simpy.Environment()
    resolver = make_resolver(env, ScriptedConnection(env, fail=True))

    out = run_resolve(env, resolver, VisitorAttributes.of(country="India"))

    assert out.is_empty
    assert out.degraded_reason == CONNECTION_FAILURE


def test_slow_submission_times_out():
    env = simpy.Environment()
    resolver = make_resolver(env, ScriptedConnection(env, latencies=[10.0]), timeout_s=1.0)

    proc = env.process(resolver.resolve(VisitorAttributes.of(country="India")))
    env.run(until=proc)

    assert env.now == pytest.approx(1.0)
    assert proc.value.degraded_reason == TIMEOUT
    assert proc.value.is_empty


def test_out_of_order_completion_restores_latest_attributes():
    env = simpy.Environment()
    conn = ScriptedConnection(env, latencies=[3.0, 0.5])
    resolver = make_resolver(env, conn)

    older = VisitorAttributes.of(country="India")
    newer = VisitorAttributes.of(country="United States of America")

    first = env.process(resolver.resolve(older))

    def later():
        yield env.timeout(0.1)
        return (yield env.process(resolver.resolve(newer)))

    second = env.process(later())
    env.run()

    # each result reflects its own submission
    assert first.value.short_aliases == frozenset({ShortAlias("0")})
    assert second.value.short_aliases == frozenset({ShortAlias("1")})

    # the connection ends up holding the most recently requested set
    assert conn.attributes == newer.as_dict()
    assert resolver.restores == 1
