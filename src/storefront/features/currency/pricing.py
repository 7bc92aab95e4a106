from __future__ import annotations

import re

CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$",
    "EUR": "€",
    "INR": "₹",
}

_HAS_SYMBOL = re.compile("[" + "".join(re.escape(s) for s in CURRENCY_SYMBOLS.values()) + "]")
_NOT_NUMERIC = re.compile(r"[^0-9.,]")


def format_price(price: str | float | int | None, currency: str) -> str:
    """
    Render a CMS price for display.

    Prices that already carry a currency symbol are returned unchanged; empty
    prices render as "N/A". Currencies without a known symbol are prefixed
    with their ISO code.
    """
    if price is None:
        return "N/A"
    text = str(price).strip()
    if not text:
        return "N/A"
    if _HAS_SYMBOL.search(text):
        return text

    code = currency.upper()
    amount = _NOT_NUMERIC.sub("", text)
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol is None:
        return f"{code} {amount}"
    return f"{symbol}{amount}"
