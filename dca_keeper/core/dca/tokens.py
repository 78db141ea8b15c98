"""
Sui token registry.

Coin types, decimals and Pyth feeds for the tokens the keeper knows about on
mainnet, plus the PriceInfoObject each feed is published to.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from ...sui.bcs import normalize_type
from .models import DirectFeed, PriceFeedRoute

SUI_COIN_TYPE = "0x2::sui::SUI"


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    name: str
    coin_type: str
    decimals: int
    pyth_feed_id: Optional[str] = None


# =============================================================================
# PYTH FEEDS
# =============================================================================
# Feed ids are 32-byte hex without 0x.
# https://pyth.network/developers/price-feed-ids

PYTH_FEED_IDS: Dict[str, str] = {
    "USDC": "eaa020c61cc479712813461ce153894a96a6c00b21ed0cfc2798d1f9a9e9c94a",
    "USDT": "2b89b9dc8fdf9f34709a5b106b472f0f39bb6ca9ce04b0fd7f2e971688e2e53b",
    "SUI": "23d7315113f5b1d3ba7a83604c44b94d79f4fd69af77f804fc7f920a6dc65744",
    "BTC": "e62df6c8b4a85fe1a67db44dc12de5db330f7ac66b72dc658afedf0f4a415b43",
    "ETH": "ff61491a931112ddf1bd8147cd1b641375f79f5825126d665480874634fd0ace",
    "SOL": "ef0d8b6fda2ceba41da15d4095d1da392a0d2f8ed0c6c7bc0f4cfac8c280b56d",
    "DEEP": "29bdd5248234e33bd93d3b81100b5fa32eaa5997843847e2c2cb16d7c6d9f7ff",
    "CETUS": "e5b274b2611143df055d6e7cd8d93fe1961716bcd4dca1cad87a83bc1e78c1ef",
    "WAL": "eba0732395fae9dec4bae12e52760b35fc1c5671e2da8b449c9af4efe5d54341",
}

SUI_USD_FEED_ID = PYTH_FEED_IDS["SUI"]

# Feed id -> PriceInfoObject id on Sui mainnet. Feeds missing here must be
# supplied through PRICE_INFO_OBJECTS.
PYTH_PRICE_INFO_OBJECTS: Dict[str, str] = {
    PYTH_FEED_IDS["USDC"]: "0x5dec622733a204ca27f5a90d8c2fad453cc6665186fd5dff13a83d0b6c9027ab",
    PYTH_FEED_IDS["USDT"]: "0x985e3db9f93f76ee8bace7c3dd5cc676a096accd5d9e09e9ae0fb6571f8e7ff5",
    PYTH_FEED_IDS["SUI"]: "0x801dbc2f0053d34734814b2d6df491ce7807a725fe9a01ad74a07e9c51396c37",
    PYTH_FEED_IDS["BTC"]: "0x9a62b4863bdeaabdc9500fce769cf7e72d5585eeb28a6d26e4cafadc13f76912",
    PYTH_FEED_IDS["ETH"]: "0x9d0d275efbd37d8a8855f6f2c761fa5983293dd8ce202ee5196626de8fcd4469",
}


# =============================================================================
# TOKENS
# =============================================================================

SUI_TOKENS: Dict[str, TokenInfo] = {
    "SUI": TokenInfo("SUI", "Sui", SUI_COIN_TYPE, 9, PYTH_FEED_IDS["SUI"]),
    "USDC": TokenInfo(
        "USDC",
        "USD Coin",
        "0xdba34672e30cb065b1f93e3ab55318768fd6fef66c15942c9f7cb846e2f900e7::usdc::USDC",
        6,
        PYTH_FEED_IDS["USDC"],
    ),
    "USDT": TokenInfo(
        "USDT",
        "Tether USD",
        "0xc060006111016b8a020ad5b33834984a437aaa7d3c74c18e09a95d48aceab08c::coin::COIN",
        6,
        PYTH_FEED_IDS["USDT"],
    ),
    "DEEP": TokenInfo(
        "DEEP",
        "DeepBook",
        "0xdeeb7a4662eec9f2f3def03fb937a663dddaa2e215b8078a284d026b7946c270::deep::DEEP",
        6,
        PYTH_FEED_IDS["DEEP"],
    ),
    "CETUS": TokenInfo(
        "CETUS",
        "Cetus",
        "0x06864a6f921804860930db6ddbe2e16acdf8504495ea7481637a1c8b9a8fe54b::cetus::CETUS",
        9,
        PYTH_FEED_IDS["CETUS"],
    ),
    "WAL": TokenInfo(
        "WAL",
        "Walrus",
        "0x356a26eb9e012a68958082340d4c4116e7f55615cf27affcff209cf0ae544f59::wal::WAL",
        9,
        PYTH_FEED_IDS["WAL"],
    ),
    "WETH": TokenInfo(
        "WETH",
        "Wrapped Ether",
        "0xaf8cd5edc19c4512f4259f0bee101a40d41ebed738ade5874359610ef8eeced5::coin::COIN",
        8,
        PYTH_FEED_IDS["ETH"],
    ),
    "WBTC": TokenInfo(
        "WBTC",
        "Wrapped Bitcoin",
        "0x027792d9fed7f9844eb4839566001bb6f6cb4804f66aa2da6fe1ee242d896881::coin::COIN",
        8,
        PYTH_FEED_IDS["BTC"],
    ),
}

_BY_COIN_TYPE: Dict[str, TokenInfo] = {normalize_type(t.coin_type): t for t in SUI_TOKENS.values()}


def get_token_by_symbol(symbol: str) -> Optional[TokenInfo]:
    return SUI_TOKENS.get(symbol.upper())


def get_token_by_type(coin_type: str) -> Optional[TokenInfo]:
    try:
        return _BY_COIN_TYPE.get(normalize_type(coin_type))
    except ValueError:
        return None


def display_symbol(coin_type: str) -> str:
    token = get_token_by_type(coin_type)
    if token:
        return token.symbol
    return coin_type.rsplit("::", 1)[-1]


def static_route(coin_type: str) -> Optional[PriceFeedRoute]:
    """Fallback route for a known token; every bundled feed is quoted in USD."""
    token = get_token_by_type(coin_type)
    if token is None or token.pyth_feed_id is None:
        return None
    return DirectFeed(token.pyth_feed_id)


def price_info_object_id(feed_id: str, overrides: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """PriceInfoObject id for a feed, preferring operator overrides."""
    key = feed_id.lower()
    if key.startswith("0x"):
        key = key[2:]
    for source in (overrides or {}, PYTH_PRICE_INFO_OBJECTS):
        for candidate, object_id in source.items():
            normalized = candidate.lower()
            if normalized.startswith("0x"):
                normalized = normalized[2:]
            if normalized == key and object_id:
                return object_id
    return None
