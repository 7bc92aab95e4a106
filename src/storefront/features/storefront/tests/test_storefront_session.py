from __future__ import annotations

from datetime import UTC, datetime

import simpy

from storefront.core.clock import SimClock
from storefront.core.config import (
    DEFAULT_CONTENT_UIDS,
    DEFAULT_CURRENCY_COUNTRY,
    PROJECT_ID_ENV,
    parse_config,
)
from storefront.core.rng import RNG
from storefront.features.backends.cms import InMemoryCms
from storefront.features.bootstrap.service import build_currency_table, build_visitor
from storefront.features.bootstrap.types import parse_simulation
from storefront.features.variants.types import DisplayContext, ShortAlias

INR_UID = DEFAULT_CONTENT_UIDS["INR"]
USD_UID = DEFAULT_CONTENT_UIDS["USD"]
GBP_UID = "cs5f0c1d2e3a4b5c6d"

AUDIENCES = [
    {"experience": "7", "variant": "0", "match": {"country": "India"}},
    {"experience": "7", "variant": "1", "match": {"country": "United States of America"}},
    {"experience": "7", "variant": "2", "match": {"country": "United Kingdom"}},
]


class RecordingAudit:
    def __init__(self) -> None:
        self.rows: list[dict] = []

    def emit(self, **fields):
        self.rows.append(fields)


class VariantOutageCms(InMemoryCms):
    """Base content loads; every variant-scoped query fails."""

    def fetch_entries(self, content_type, *, variant_uids):
        if variant_uids:
            self.requests.append((content_type, tuple(variant_uids)))
            yield self.env.timeout(self.cfg.latency_s)
            raise ConnectionError("variant entries unavailable")
        return (yield from super().fetch_entries(content_type, variant_uids=variant_uids))


def make_visitor(
    env,
    *,
    cms_latency: float = 0.1,
    project_id: str = "proj",
    cms_cls=InMemoryCms,
    with_gbp: bool = False,
):
    cfg_dict = {
        "run": {"seed": 1, "start_date": "2026-01-01"},
        "storage": {"duckdb_path": "unused.duckdb"},
        "logging": {"level": "INFO"},
        "personalize": {"project_id": project_id},
    }
    if with_gbp:
        cfg_dict["variants"] = {
            "content_uids": {**DEFAULT_CONTENT_UIDS, "GBP": GBP_UID},
            "currency_country": {**DEFAULT_CURRENCY_COUNTRY, "GBP": "United Kingdom"},
        }
    cfg = parse_config(cfg_dict)
    sim = parse_simulation(
        {
            "personalize": {
                "jitter": False,
                "init_latency_s": 0.4,
                "set_latency_s": 0.2,
                "impression_latency_s": 0.05,
                "audiences": AUDIENCES,
            },
            "geo": {"backends": [{"name": "geo", "latency_s": 0.3}]},
            "cms": {
                "latency_s": cms_latency,
                "catalog": {
                    "shoes": [
                        {
                            "uid": "shoe_runner",
                            "price": "120",
                            "variants": {
                                INR_UID: {"price": "9999"},
                                GBP_UID: {"price": "95"},
                            },
                        }
                    ]
                },
            },
        }
    )
    clock = SimClock(env, datetime(2026, 1, 1, tzinfo=UTC))
    cms = cms_cls(env=env, cfg=sim.cms)
    audit = RecordingAudit()
    v = build_visitor(
        env=env,
        cfg=cfg,
        sim=sim,
        visitor_id="v1",
        country="India",
        rng=RNG(3),
        table=build_currency_table(cfg),
        clock=clock,
        cms=cms,
        events=audit,
    )
    return v, cms, audit


def connection_of(v):
    return v.provider.connection


def test_content_is_fetched_only_after_resolution_settles():
    env = simpy.Environment()
    v, cms, _ = make_visitor(env)

    env.process(v.machine.start())
    proc = env.process(v.session.render(DisplayContext(page="homepage")))
    env.run()

    # never rendered base content first
    assert cms.requests == [("shoes", (INR_UID,))]
    result = proc.value
    assert result.currency == "INR"
    assert result.prices == ("₹9999",)
    assert result.impressions.value.sent == (ShortAlias("0"),)
    assert connection_of(v).impressions == ["0"]


def test_same_page_rerender_does_not_refire_impressions():
    env = simpy.Environment()
    v, _, _ = make_visitor(env)
    home = DisplayContext(page="homepage")

    env.process(v.machine.start())
    first = env.process(v.session.render(home))
    env.run()
    second = env.process(v.session.render(home))
    env.run()

    assert first.value.epoch == second.value.epoch
    assert second.value.impressions.value.sent == ()
    assert connection_of(v).impressions == ["0"]


def test_new_page_is_a_new_epoch():
    env = simpy.Environment()
    v, _, _ = make_visitor(env)

    env.process(v.machine.start())
    first = env.process(v.session.render(DisplayContext(page="homepage")))
    env.run()
    detail = DisplayContext(page="product_detail", product_ids=("shoe_runner",))
    second = env.process(v.session.render(detail))
    env.run()

    assert second.value.epoch == first.value.epoch + 1
    assert connection_of(v).impressions == ["0", "0"]
    names = [name for name, _ in connection_of(v).events]
    assert "product_viewed" in names
    assert "product_list_viewed" in names


def test_variant_change_during_fetch_renders_again():
    env = simpy.Environment()
    v, cms, audit = make_visitor(env, cms_latency=1.0)

    env.process(v.machine.start())
    proc = env.process(v.session.render(DisplayContext(page="homepage")))

    def switch():
        # resolution settles at 0.9, content fetch runs 0.9 -> 1.9
        yield env.timeout(1.0)
        yield env.process(v.machine.set_currency("USD"))

    env.process(switch())
    env.run()

    result = proc.value
    assert [r[1] for r in cms.requests] == [(INR_UID,), (USD_UID,)]
    assert result.currency == "USD"
    assert result.variants.short_aliases == frozenset({ShortAlias("1")})
    # the superseded INR render never reported an impression
    assert connection_of(v).impressions == ["1"]
    rendered = [r for r in audit.rows if r["event_type"] == "content_rendered"]
    assert [r["value_str"] for r in rendered] == ["USD"]


def test_unconfigured_sdk_renders_base_content_without_impressions(monkeypatch):
    monkeypatch.delenv(PROJECT_ID_ENV, raising=False)
    env = simpy.Environment()
    v, cms, _ = make_visitor(env, project_id="")

    env.process(v.machine.start())
    proc = env.process(v.session.render(DisplayContext(page="homepage")))
    env.run()

    assert cms.requests == [("shoes", ())]
    # base content is priced in the default currency, not the detected one
    assert proc.value.currency == "USD"
    assert proc.value.prices == ("$120",)
    assert proc.value.impressions.value.reason == "no_aliases"
    assert v.provider.connection is None


def test_variant_content_outage_shows_base_content_without_impressions():
    env = simpy.Environment()
    v, cms, audit = make_visitor(env, cms_cls=VariantOutageCms)

    env.process(v.machine.start())
    proc = env.process(v.session.render(DisplayContext(page="homepage")))
    env.run()

    result = proc.value
    assert cms.requests == [("shoes", (INR_UID,)), ("shoes", ())]
    assert result.page.is_personalized is False
    assert result.variants.short_aliases == frozenset({ShortAlias("0")})
    assert result.currency == "USD"
    assert result.prices == ("$120",)
    # the visitor never saw the variant, so it is not reported as shown
    assert result.impressions is None
    assert connection_of(v).impressions == []
    rendered = [r for r in audit.rows if r["event_type"] == "content_rendered"]
    assert rendered[0]["payload"]["personalized"] is False


def test_currency_without_symbol_renders_with_iso_code():
    env = simpy.Environment()
    v, cms, _ = make_visitor(env, with_gbp=True)

    def journey():
        yield env.process(v.machine.start())
        yield env.process(v.machine.set_currency("GBP"))
        return (yield env.process(v.session.render(DisplayContext(page="homepage"))))

    proc = env.process(journey())
    env.run()

    result = proc.value
    assert cms.requests[-1] == ("shoes", (GBP_UID,))
    assert result.currency == "GBP"
    assert result.prices == ("GBP 95",)
    assert connection_of(v).impressions == ["2"]


def test_settle_tracking_waits_for_detached_impressions():
    env = simpy.Environment()
    v, _, _ = make_visitor(env)

    def journey():
        yield env.process(v.machine.start())
        yield env.process(v.session.render(DisplayContext(page="homepage")))
        # impression delivery is still in flight right after the render
        assert v.tracker.delivered == 0
        yield v.session.settle_tracking()
        return v.tracker.delivered

    proc = env.process(journey())
    env.run()

    assert proc.value == 1
