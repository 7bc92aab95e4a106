from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import simpy

from storefront.core.clock import SimClock
from storefront.core.config import StorefrontConfig
from storefront.core.ids import VisitorIds, resolve_run_id
from storefront.core.logging import get_logger
from storefront.core.rng import RNG
from storefront.core.types import RunContext
from storefront.features.backends.cms import InMemoryCms
from storefront.features.backends.geo import SimulatedGeoBackend
from storefront.features.backends.personalize import SimulatedPersonalizeClient
from storefront.features.content.service import ContentFetchFacade
from storefront.features.currency.service import CurrencyStateMachine
from storefront.features.events.service import CounterEventIdGenerator, EventService
from storefront.features.geolocation.service import ChainedCountryOracle
from storefront.features.impressions.ledger import ImpressionLedger
from storefront.features.impressions.service import ImpressionTracker
from storefront.features.persistence.duckdb_adapter import DuckDBAdapter
from storefront.features.persistence.service import PersistenceService
from storefront.features.preferences.service import DuckDBPreferenceStore, PreferenceStore
from storefront.features.resolver.service import ResolverConfig, VariantResolver
from storefront.features.sdk.service import SdkConnectionProvider
from storefront.features.sdk.types import SimGen
from storefront.features.storefront.service import PRODUCT_DETAIL_PAGE, StorefrontSession
from storefront.features.variants.normalize import CurrencyTable
from storefront.features.variants.types import DisplayContext

from .types import SimulationConfig, parse_simulation

HOME_PAGE = "homepage"


@dataclass(frozen=True)
class BootstrapResult:
    ctx: RunContext
    duckdb_path: str
    visitors: int = 0
    event_counts: dict[str, int] = field(default_factory=dict)


@dataclass
class VisitorWiring:
    """Everything one simulated visitor (one client process) owns."""

    visitor_id: str
    country: str
    rng: RNG
    client: SimulatedPersonalizeClient
    provider: SdkConnectionProvider
    resolver: VariantResolver
    ledger: ImpressionLedger
    tracker: ImpressionTracker
    machine: CurrencyStateMachine
    session: StorefrontSession


def build_currency_table(cfg: StorefrontConfig) -> CurrencyTable:
    return CurrencyTable(
        content_uids=cfg.variants.content_uids,
        country_currency=cfg.variants.country_currency,
        currency_country=cfg.variants.currency_country,
        default_currency=cfg.variants.default_currency,
    )


def build_visitor(
    *,
    env: simpy.Environment,
    cfg: StorefrontConfig,
    sim: SimulationConfig,
    visitor_id: str,
    country: str,
    rng: RNG,
    table: CurrencyTable,
    clock: SimClock,
    cms: InMemoryCms,
    events: EventService | None = None,
    preferences: PreferenceStore | None = None,
) -> VisitorWiring:
    """
    One provider (and therefore one vendor connection) per visitor: each
    simulated visitor is its own client process.
    """
    client = SimulatedPersonalizeClient(env=env, cfg=sim.personalize, rng=rng)
    provider = SdkConnectionProvider(
        env=env, client=client, project_id=lambda: cfg.personalize.project_id
    )
    resolver = VariantResolver(
        env=env,
        provider=provider,
        table=table,
        cfg=ResolverConfig(timeout_s=cfg.personalize.resolve_timeout_s),
        clock=clock,
    )
    ledger = ImpressionLedger()
    tracker = ImpressionTracker(
        env=env,
        provider=provider,
        ledger=ledger,
        clock=clock,
        visitor_id=visitor_id,
        audit=events,
    )
    oracle = ChainedCountryOracle(
        [
            SimulatedGeoBackend(env=env, cfg=b, country=country, rng=rng)
            for b in sim.geo_backends
        ]
    )
    machine = CurrencyStateMachine(
        env=env,
        visitor_id=visitor_id,
        resolver=resolver,
        oracle=oracle,
        table=table,
        ledger=ledger,
        default_country=cfg.geo.default_country,
        detect_timeout_s=cfg.geo.detect_timeout_s,
        preferences=preferences,
        analytics=tracker,
        audit=events,
    )
    session = StorefrontSession(
        env=env,
        visitor_id=visitor_id,
        machine=machine,
        content=ContentFetchFacade(cms=cms),
        tracker=tracker,
        audit=events,
    )
    return VisitorWiring(
        visitor_id=visitor_id,
        country=country,
        rng=rng,
        client=client,
        provider=provider,
        resolver=resolver,
        ledger=ledger,
        tracker=tracker,
        machine=machine,
        session=session,
    )


def visitor_journey(
    env: simpy.Environment,
    v: VisitorWiring,
    sim: SimulationConfig,
    events: EventService | None = None,
    content_type: str = "shoes",
) -> SimGen:
    """
    homepage -> (maybe manual currency, maybe a quick second change) -> homepage
    -> product detail -> (maybe color) -> product detail -> (maybe reset) -> end
    """
    b = sim.behavior
    rng = v.rng
    machine = v.machine
    session = v.session

    def think() -> simpy.events.Timeout:
        if b.mean_think_time_s <= 0:
            return env.timeout(0)
        return env.timeout(rng.expovariate(1.0 / b.mean_think_time_s))

    if events is not None:
        events.emit(event_type="session_start", visitor_id=v.visitor_id, value_str=v.country)

    yield env.process(machine.start())

    home = DisplayContext(page=HOME_PAGE, content_type=content_type)
    yield env.process(session.render(home))
    yield think()

    currencies = machine.table.currencies
    if rng.random() < b.manual_override_p:
        first = rng.choice([c for c in currencies if c != machine.currency] or currencies)
        env.process(machine.set_currency(first))
        if rng.random() < b.toggle_p:
            yield env.timeout(b.toggle_delay_s)
            second = rng.choice([c for c in currencies if c != first] or currencies)
            env.process(machine.set_currency(second))
        yield env.process(session.render(home))
        yield think()

    entries = sim.cms.catalog.get(content_type, [])
    if entries:
        entry = rng.choice(entries)
        product = DisplayContext(
            page=PRODUCT_DETAIL_PAGE,
            content_type=content_type,
            product_ids=(str(entry.get("uid", "unknown")),),
        )
        yield env.process(session.render(product))
        yield think()

        if b.colors and rng.random() < b.color_pick_p:
            yield env.process(machine.select_color(rng.choice(list(b.colors))))
            yield env.process(session.render(product))
            yield think()

    if machine.state.mode == "manual" and rng.random() < b.reset_p:
        yield env.process(machine.reset_to_auto())
        yield env.process(session.render(home))

    yield session.settle_tracking()

    if events is not None:
        events.emit(
            event_type="session_end",
            visitor_id=v.visitor_id,
            value_str=machine.currency,
            payload={
                "mode": machine.state.mode,
                "renders": session.renders,
                "impressions": v.tracker.delivered,
                "discarded": machine.discarded,
            },
        )


def bootstrap_run(cfg: StorefrontConfig, config_path: str | None = None) -> BootstrapResult:
    raw: dict[str, Any] = cfg.raw if isinstance(cfg.raw, dict) else {}
    sim = parse_simulation(raw.get("simulation"))

    # ----- run identity -----
    run_id = resolve_run_id(raw, cfg.run.run_id)
    logger = get_logger("storefront", cfg.logging.level)

    rng = RNG(cfg.run.seed)
    visitor_ids = VisitorIds(run_id=run_id)

    start_dt_utc = datetime.fromisoformat(cfg.run.start_date).replace(tzinfo=UTC)
    ctx = RunContext(
        run_id=run_id,
        seed=cfg.run.seed,
        start_dt_utc=start_dt_utc,
        horizon_s=sim.horizon_s,
        personalize_configured=bool(cfg.personalize.project_id),
    )

    env = simpy.Environment()
    clock = SimClock(env, start_dt_utc)

    # ----- cold storage -----
    adapter = DuckDBAdapter(path=cfg.storage.duckdb_path, clean_slate=cfg.storage.clean_slate)
    persistence = PersistenceService(
        adapter=adapter,
        every_n_events=cfg.storage.flush.every_n_events,
        or_every_seconds=cfg.storage.flush.or_every_seconds,
    )
    persistence.open()
    persistence.start_periodic_flush(env)

    events = EventService(
        env=env,
        clock=clock,
        persistence=persistence,
        ids=CounterEventIdGenerator(run_id=run_id),
        run_id=run_id,
        logger=logger,
    )
    preferences = DuckDBPreferenceStore(adapter=adapter, clock=clock)

    # ----- shared backends -----
    table = build_currency_table(cfg)
    cms = InMemoryCms(env=env, cfg=sim.cms, rng=rng.spawn("cms"))

    if not ctx.personalize_configured:
        logger.warning(
            "personalize_not_configured",
            extra={"run_id": run_id, "reason": "every visitor gets base content"},
        )

    countries = list(sim.countries)
    weights = [sim.countries[c] for c in countries]
    wirings: list[VisitorWiring] = []

    def arrivals() -> SimGen:
        for _ in range(sim.visitors):
            if sim.mean_interarrival_s > 0:
                yield env.timeout(rng.expovariate(1.0 / sim.mean_interarrival_s))
            visitor_id = visitor_ids.next_visitor_id()
            v = build_visitor(
                env=env,
                cfg=cfg,
                sim=sim,
                visitor_id=visitor_id,
                country=rng.choices(countries, weights=weights)[0],
                rng=rng.spawn(visitor_id),
                table=table,
                clock=clock,
                cms=cms,
                events=events,
                preferences=preferences,
            )
            wirings.append(v)
            env.process(visitor_journey(env, v, sim, events=events))

    env.process(arrivals())

    # ----- run lifecycle -----
    try:
        events.emit(event_type="run_started", payload={"visitors": sim.visitors})

        logger.info("starting sim", extra={"run_id": ctx.run_id, "reason": config_path})
        env.run(until=sim.horizon_s)

        end_ts = start_dt_utc + timedelta(seconds=sim.horizon_s)
        events.emit(
            event_type="run_finished",
            payload={"visitors": len(wirings), "end_ts_utc": end_ts.isoformat()},
        )
        persistence.flush(reason="bootstrap_finish")
    finally:
        persistence.close()

    return BootstrapResult(
        ctx=ctx,
        duckdb_path=cfg.storage.duckdb_path,
        visitors=len(wirings),
        event_counts=persistence.written_by_type(),
    )
