from __future__ import annotations

from datetime import UTC, datetime

import simpy

from storefront.core.clock import SimClock
from storefront.features.persistence.duckdb_adapter import DuckDBAdapter
from storefront.features.preferences.service import CurrencyPreference, DuckDBPreferenceStore


def test_preference_json_shape():
    pref = CurrencyPreference(manual_currency="INR")
    assert pref.to_json() == '{"isManual":true,"manualCurrency":"INR"}'
    assert CurrencyPreference.from_json(pref.to_json()) == pref


def test_unreadable_preference_means_none():
    assert CurrencyPreference.from_json("not json") is None
    assert CurrencyPreference.from_json("[1, 2]") is None
    assert CurrencyPreference.from_json('{"isManual": true}') is None


def test_currency_is_normalized_on_read():
    pref = CurrencyPreference.from_json('{"manualCurrency": "usd", "isManual": true}')
    assert pref == CurrencyPreference(manual_currency="USD")


def test_duckdb_store_round_trip(tmp_path):
    env = simpy.Environment()
    adapter = DuckDBAdapter(path=str(tmp_path / "prefs.duckdb"), clean_slate=True)
    adapter.open()
    store = DuckDBPreferenceStore(
        adapter=adapter, clock=SimClock(env, datetime(2026, 1, 1, tzinfo=UTC))
    )

    assert store.load("v1") is None

    store.save("v1", CurrencyPreference(manual_currency="EUR"))
    store.save("v2", CurrencyPreference(manual_currency="INR"))
    assert store.load("v1") == CurrencyPreference(manual_currency="EUR")

    store.clear("v1")
    assert store.load("v1") is None
    assert store.load("v2") == CurrencyPreference(manual_currency="INR")

    adapter.close()
