from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from .types import ATTR_COUNTRY, ATTR_CURRENCY, ContentVariantUid, ShortAlias, VisitorAttributes

ALIAS_SEPARATOR = "_"


def short_alias_from_raw(raw: object) -> ShortAlias | None:
    """
    Derive the impression alias from one vendor identifier.

    Rule: the final `_`-delimited segment. Identifiers whose final segment is
    empty ("abc_", "", "_") yield None.

      "1"                      -> "1"
      "cs_personalize_7_1"     -> "1"
      "cs_personalize_7_"      -> None
    """
    if raw is None:
        return None
    text = str(raw).strip()
    segment = text.rsplit(ALIAS_SEPARATOR, 1)[-1].strip()
    if not segment:
        return None
    return ShortAlias(segment)


def short_aliases_from_raw(raw_identifiers: Iterable[object]) -> frozenset[ShortAlias]:
    out: set[ShortAlias] = set()
    for raw in raw_identifiers:
        alias = short_alias_from_raw(raw)
        if alias is not None:
            out.add(alias)
    return frozenset(out)


@dataclass(frozen=True)
class CurrencyTable:
    """
    Business lookups shared by resolution and the currency state machine.

    content_uids: currency -> full content variant uid
    country_currency: country -> currency
    currency_country: currency -> country (the audience a manual currency maps to)
    """

    content_uids: Mapping[str, str]
    country_currency: Mapping[str, str]
    currency_country: Mapping[str, str]
    default_currency: str = "USD"
    _country_index: dict[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.default_currency not in self.currency_country:
            raise ValueError(
                f"default_currency={self.default_currency!r} has no entry in currency_country"
            )
        index = {_fold(k): v.upper() for k, v in self.country_currency.items()}
        object.__setattr__(self, "_country_index", index)

    @property
    def currencies(self) -> list[str]:
        return sorted(self.currency_country)

    def currency_for_country(self, country: str | None) -> str:
        if not country:
            return self.default_currency
        return self._country_index.get(_fold(country), self.default_currency)

    def country_for_currency(self, currency: str) -> str:
        code = currency.upper()
        if code not in self.currency_country:
            raise KeyError(f"Unsupported currency={currency!r}. Allowed={self.currencies}")
        return self.currency_country[code]

    def currency_for_attributes(self, attributes: VisitorAttributes) -> str:
        """Resolved business attribute: explicit currency wins over the country's currency."""
        if ATTR_CURRENCY in attributes:
            return attributes[ATTR_CURRENCY].upper()
        return self.currency_for_country(attributes.get(ATTR_COUNTRY))


def content_uid_for(currency: str, table: CurrencyTable) -> ContentVariantUid | None:
    """
    Look up the content variant uid for a currency.

    Never derived from vendor identifiers; unknown currencies yield None (base content).
    """
    uid = table.content_uids.get(currency.upper())
    if not uid:
        return None
    return ContentVariantUid(uid)


def _fold(country: str) -> str:
    return " ".join(country.strip().lower().split())
