"""
Symbol normalisation for DWLF market identifiers.

Users type tickers loosely (``btc``, ``BTC/USD``, ``BTCUSD``); the platform
expects ``BASE-QUOTE`` for crypto pairs and the bare ticker for equities.
"""

from __future__ import annotations

import re
from typing import FrozenSet, Iterable, List

KNOWN_STOCKS: FrozenSet[str] = frozenset(
    {
        "NVDA", "TSLA", "META", "AAPL", "AMZN", "GOOG", "GOOGL", "MSFT", "AMD",
        "SLV", "GDXJ", "SILJ", "AGQ", "GLD", "GDX", "GOLD",
        "MARA", "RIOT", "BTBT", "CIFR", "IREN", "CLSK", "COIN", "MSTR",
        "HUT", "HIVE", "BITF", "WULF", "LSPD", "SOFI",
    }
)

_CONCATENATED_PAIR = re.compile(r"^([A-Z]{2,5})(USD|USDT|EUR|GBP|BTC|ETH)$")


def normalize_symbol(symbol: str) -> str:
    """Return the canonical platform form of ``symbol``.

    Unlisted bare tickers default to a ``-USD`` crypto pair, so a new equity
    that is missing from :data:`KNOWN_STOCKS` is rewritten as crypto.
    """

    upper = symbol.strip().upper()

    if "/" in upper:
        return upper.replace("/", "-")
    if "-" in upper:
        return upper
    if upper in KNOWN_STOCKS:
        return upper

    match = _CONCATENATED_PAIR.match(upper)
    if match:
        return f"{match.group(1)}-{match.group(2)}"

    return f"{upper}-USD"


def normalize_symbols(symbols: Iterable[str]) -> List[str]:
    """Normalise a sequence of symbols, skipping blanks and duplicates."""

    seen: List[str] = []
    for raw in symbols:
        if not raw or not raw.strip():
            continue
        normalized = normalize_symbol(raw)
        if normalized not in seen:
            seen.append(normalized)
    return seen
