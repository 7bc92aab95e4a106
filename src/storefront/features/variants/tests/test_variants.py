from __future__ import annotations

import pytest

from storefront.core.config import (
    DEFAULT_CONTENT_UIDS,
    DEFAULT_COUNTRY_CURRENCY,
    DEFAULT_CURRENCY_COUNTRY,
)
from storefront.features.variants.normalize import (
    CurrencyTable,
    content_uid_for,
    short_alias_from_raw,
    short_aliases_from_raw,
)
from storefront.features.variants.types import (
    ContentVariantUid,
    DisplayContext,
    ShortAlias,
    VisitorAttributes,
    require_content_uids,
    require_short_aliases,
)


def make_table() -> CurrencyTable:
    return CurrencyTable(
        content_uids=DEFAULT_CONTENT_UIDS,
        country_currency=DEFAULT_COUNTRY_CURRENCY,
        currency_country=DEFAULT_CURRENCY_COUNTRY,
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1", "1"),
        ("0", "0"),
        ("cs_personalize_7_1", "1"),
        ("exp_12_variant_3", "3"),
        (" cs_personalize_7_0 ", "0"),
    ],
)
def test_short_alias_is_final_segment(raw, expected):
    assert short_alias_from_raw(raw) == ShortAlias(expected)


@pytest.mark.parametrize("raw", ["", "_", "cs_personalize_7_", None])
def test_short_alias_empty_final_segment_is_dropped(raw):
    assert short_alias_from_raw(raw) is None


def test_short_aliases_from_raw_dedupes_and_drops_empties():
    out = short_aliases_from_raw(["cs_personalize_7_1", "1", "cs_personalize_9_", "2"])
    assert out == frozenset({ShortAlias("1"), ShortAlias("2")})


def test_currency_table_country_lookup_is_case_insensitive():
    table = make_table()
    assert table.currency_for_country("India") == "INR"
    assert table.currency_for_country("  india ") == "INR"
    assert table.currency_for_country("United  States of America") == "USD"


def test_currency_table_unknown_country_falls_back_to_default():
    table = make_table()
    assert table.currency_for_country("Germany") == "USD"
    assert table.currency_for_country(None) == "USD"


def test_currency_table_inverse_mapping():
    table = make_table()
    assert table.country_for_currency("inr") == "India"
    assert table.country_for_currency("EUR") == "United States of America"
    with pytest.raises(KeyError):
        table.country_for_currency("GBP")


def test_currency_table_requires_default_currency_mapping():
    with pytest.raises(ValueError):
        CurrencyTable(
            content_uids=DEFAULT_CONTENT_UIDS,
            country_currency=DEFAULT_COUNTRY_CURRENCY,
            currency_country={"INR": "India"},
            default_currency="USD",
        )


def test_currency_for_attributes_prefers_explicit_currency():
    table = make_table()
    attrs = VisitorAttributes.of(country="United States of America", currency="EUR")
    assert table.currency_for_attributes(attrs) == "EUR"
    assert table.currency_for_attributes(VisitorAttributes.of(country="India")) == "INR"


def test_content_uid_comes_from_lookup_table():
    table = make_table()
    assert content_uid_for("INR", table) == ContentVariantUid("csb474334af86d3526")
    assert content_uid_for("usd", table) == ContentVariantUid("cs91db6b7e0d7f71e1")
    assert content_uid_for("GBP", table) is None


def test_visitor_attributes_are_immutable_and_order_independent():
    a = VisitorAttributes.of(country="India")
    b = a.with_attribute("color", "Red")

    assert "color" not in a
    assert b.as_dict() == {"color": "Red", "country": "India"}
    assert b == VisitorAttributes.from_mapping({"country": "India", "color": "Red"})
    assert b.without("color") == a


def test_visitor_attributes_reject_empty_values():
    with pytest.raises(ValueError):
        VisitorAttributes.from_mapping({"country": "  "})


def test_identifier_types_are_not_interchangeable():
    with pytest.raises(TypeError):
        require_short_aliases(["1"])
    with pytest.raises(TypeError):
        require_short_aliases([ContentVariantUid("cs91db6b7e0d7f71e1")])
    with pytest.raises(TypeError):
        require_content_uids([ShortAlias("1")])

    assert require_short_aliases([ShortAlias("1")]) == [ShortAlias("1")]


def test_identifier_types_reject_empty_values():
    with pytest.raises(ValueError):
        ShortAlias("")
    with pytest.raises(ValueError):
        ContentVariantUid("")


def test_display_context_payload():
    ctx = DisplayContext(page="product_detail", product_ids=("shoe_1",), extra={"k": "v"})
    assert ctx.as_payload() == {
        "k": "v",
        "page": "product_detail",
        "contentType": "shoes",
        "productIds": ["shoe_1"],
    }
    assert ctx.render_key() == ("product_detail", ("shoe_1",))
