"""Lexical symbol classification and provider-symbol mapping.

Both functions are pure: the asset type of a ticker is decided from its
shape alone, so it never changes for the lifetime of a session.

Rules, first match wins:

1. Known commodity / metal tickers            -> COMMODITY
2. Known currency pairs and the home currency -> CURRENCY
3. Exactly three uppercase letters            -> FUND (TEFAS code convention)
4. Exchange-suffixed form ends in ``.IS``     -> STOCK
5. Anything else                              -> CURRENCY
"""

from __future__ import annotations

import re

from portfolio_pricer.core.models import AssetType, ProviderSymbol, Symbol

HOME_CURRENCY = "TRY"
EXCHANGE_SUFFIX = ".IS"
FX_SUFFIX = "=X"

COMMODITY_SYMBOLS: frozenset[str] = frozenset({"GAUTRY", "XAGTRY", "XAUUSD", "XAGUSD"})

# Pairs quoted against the home currency; the provider expects ``USDTRY=X``.
FX_SYMBOLS: frozenset[str] = frozenset(
    {"USDTRY", "EURTRY", "GBPTRY", "CHFTRY", "JPYTRY", "EURUSD"}
)
CURRENCY_SYMBOLS: frozenset[str] = FX_SYMBOLS | {HOME_CURRENCY}

_FUND_CODE = re.compile(r"^[A-Z]{3}$")
_EQUITY_CODE = re.compile(r"^[A-Z]{3,6}$")
_EXCHANGE_FORM = re.compile(r"^[A-Z0-9]+\.IS$")


def normalize(symbol: str) -> Symbol:
    """Trim and upper-case a user-entered ticker."""
    return symbol.strip().upper()


def classify(symbol: str) -> AssetType:
    """Map a ticker to its asset type."""
    s = normalize(symbol)
    if s in COMMODITY_SYMBOLS:
        return AssetType.COMMODITY
    if s in CURRENCY_SYMBOLS:
        return AssetType.CURRENCY
    if _FUND_CODE.match(s):
        return AssetType.FUND
    if _EXCHANGE_FORM.match(transform(s)):
        return AssetType.STOCK
    return AssetType.CURRENCY


def transform(symbol: str) -> ProviderSymbol:
    """Map a ticker to the form the equity/FX provider expects.

    ``USDTRY`` -> ``USDTRY=X``, ``THYAO`` -> ``THYAO.IS``; anything carrying
    a provider marker already (``=``, ``.``, ``-``) passes through unchanged.
    """
    s = normalize(symbol)
    if s in FX_SYMBOLS:
        return f"{s}{FX_SUFFIX}"
    if s in COMMODITY_SYMBOLS or s == HOME_CURRENCY:
        return s
    if _EQUITY_CODE.match(s):
        return f"{s}{EXCHANGE_SUFFIX}"
    return s


def is_home_currency(symbol: str) -> bool:
    return normalize(symbol) == HOME_CURRENCY
