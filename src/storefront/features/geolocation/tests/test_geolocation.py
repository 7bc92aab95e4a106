from __future__ import annotations

import pytest
import simpy

from storefront.core.rng import RNG
from storefront.features.backends.geo import SimulatedGeoBackend
from storefront.features.backends.types import GeoBackendConfig
from storefront.features.geolocation.service import ChainedCountryOracle


class FakeBackend:
    def __init__(self, env, name: str, answer=None, *, fail: bool = False, delay: float = 0.1):
        self.env = env
        self.name = name
        self.answer = answer
        self.fail = fail
        self.delay = delay
        self.calls = 0

    def lookup(self):
        self.calls += 1
        yield self.env.timeout(self.delay)
        if self.fail:
            raise ConnectionError(f"{self.name} down")
        return self.answer


def run_detect(env, oracle):
    proc = env.process(oracle.detect_country())
    env.run()
    return proc.value


def test_first_backend_answer_wins():
    env = simpy.Environment()
    a = FakeBackend(env, "a", "India")
    b = FakeBackend(env, "b", "Germany")

    assert run_detect(env, ChainedCountryOracle([a, b])) == "India"
    assert b.calls == 0


def test_failures_and_empty_answers_move_to_next_backend():
    env = simpy.Environment()
    a = FakeBackend(env, "a", fail=True)
    b = FakeBackend(env, "b", "   ")
    c = FakeBackend(env, "c", " India ")

    assert run_detect(env, ChainedCountryOracle([a, b, c])) == "India"
    assert env.now == pytest.approx(0.3)


def test_all_backends_failing_yields_none():
    env = simpy.Environment()
    oracle = ChainedCountryOracle(
        [FakeBackend(env, "a", fail=True), FakeBackend(env, "b", None)]
    )
    assert run_detect(env, oracle) is None


def test_chain_needs_a_backend():
    with pytest.raises(ValueError):
        ChainedCountryOracle([])


def test_simulated_backend_reports_true_country():
    env = simpy.Environment()
    backend = SimulatedGeoBackend(
        env=env,
        cfg=GeoBackendConfig(name="sim", latency_s=0.25),
        country="India",
        rng=RNG(1),
    )

    assert run_detect(env, ChainedCountryOracle([backend])) == "India"
    assert env.now == pytest.approx(0.25)


def test_simulated_backend_failure_falls_through():
    env = simpy.Environment()
    broken = SimulatedGeoBackend(
        env=env,
        cfg=GeoBackendConfig(name="broken", latency_s=0.1, fail_p=1.0),
        country="India",
        rng=RNG(1),
    )
    healthy = SimulatedGeoBackend(
        env=env, cfg=GeoBackendConfig(name="ok", latency_s=0.1), country="India", rng=RNG(2)
    )

    assert run_detect(env, ChainedCountryOracle([broken, healthy])) == "India"
    assert broken.calls == 1
