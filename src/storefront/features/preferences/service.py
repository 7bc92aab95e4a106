from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol

from storefront.core.clock import ClockLike
from storefront.features.persistence.duckdb_adapter import DuckDBAdapter


@dataclass(frozen=True)
class CurrencyPreference:
    manual_currency: str
    is_manual: bool = True

    def to_json(self) -> str:
        return json.dumps(
            {"manualCurrency": self.manual_currency, "isManual": self.is_manual},
            sort_keys=True,
            separators=(",", ":"),
        )

    @classmethod
    def from_json(cls, text: str) -> CurrencyPreference | None:
        """Unreadable or partial records are treated as "no preference"."""
        try:
            data: Any = json.loads(text)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict):
            return None
        currency = data.get("manualCurrency")
        if not isinstance(currency, str) or not currency:
            return None
        return cls(manual_currency=currency.upper(), is_manual=bool(data.get("isManual", False)))


class PreferenceStore(Protocol):
    def load(self, visitor_id: str) -> CurrencyPreference | None: ...
    def save(self, visitor_id: str, pref: CurrencyPreference) -> None: ...
    def clear(self, visitor_id: str) -> None: ...


class DuckDBPreferenceStore:
    """
    Persists one manual-currency record per visitor in the preferences table.
    """

    KEY_PREFIX = "currency_preference"

    def __init__(self, *, adapter: DuckDBAdapter, clock: ClockLike) -> None:
        self.adapter = adapter
        self.clock = clock

    def _key(self, visitor_id: str) -> str:
        return f"{self.KEY_PREFIX}:{visitor_id}"

    def load(self, visitor_id: str) -> CurrencyPreference | None:
        raw = self.adapter.get_preference(self._key(visitor_id))
        if raw is None:
            return None
        return CurrencyPreference.from_json(raw)

    def save(self, visitor_id: str, pref: CurrencyPreference) -> None:
        self.adapter.put_preference(
            self._key(visitor_id), pref.to_json(), updated_at=self.clock.get_current_time()
        )

    def clear(self, visitor_id: str) -> None:
        self.adapter.delete_preference(self._key(visitor_id))
