"""
Tests for the Oracle Price Resolver

Routing, freshness checks and cross-rate computation over a fake chain
reader.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from dca_keeper.core.dca.models import DirectFeed, PriceObservation, RoutedFeed
from dca_keeper.core.dca.oracle import OracleResolver, type_name_key, usd_price
from dca_keeper.core.dca.tokens import PYTH_FEED_IDS, PYTH_PRICE_INFO_OBJECTS, SUI_USD_FEED_ID
from dca_keeper.core.recovery.errors import OracleStalenessError
from dca_keeper.sui.bcs import normalize_address


NOW = 1_700_000_000
USDC_TYPE = "0xdba34672e30cb065b1f93e3ab55318768fd6fef66c15942c9f7cb846e2f900e7::usdc::USDC"
SUI_TYPE = "0x2::sui::SUI"
FOO_TYPE = "0xf00::foo::FOO"
FOO_FEED = "ab" * 32
FOO_OBJECT = normalize_address("0xf00d")


def price_object(object_id, feed_id, price, expo=-8, arrival=NOW - 5, attestation=None):
    """Fake PriceInfoObject response in the shape sui_multiGetObjects returns."""
    return {
        "data": {
            "objectId": object_id,
            "content": {
                "dataType": "moveObject",
                "fields": {
                    "price_info": {
                        "fields": {
                            "attestation_time": str(attestation if attestation is not None else arrival),
                            "arrival_time": str(arrival),
                            "price_feed": {
                                "fields": {
                                    "price_identifier": {"fields": {"bytes": list(bytes.fromhex(feed_id))}},
                                    "price": {
                                        "fields": {
                                            "price": {"fields": {"negative": price < 0, "magnitude": str(abs(price))}},
                                            "conf": "1000",
                                            "expo": {"fields": {"negative": expo < 0, "magnitude": str(abs(expo))}},
                                            "timestamp": str(arrival),
                                        }
                                    },
                                }
                            },
                        }
                    }
                },
            },
        }
    }


def make_reader(objects):
    """Reader whose multi_get_objects answers from `objects` keyed by object id."""
    by_id = {normalize_address(o["data"]["objectId"]): o for o in objects}
    reader = AsyncMock()

    async def multi_get(ids, show_content=True, show_owner=False):
        return [by_id.get(normalize_address(i), {"error": {"code": "notExists"}}) for i in ids]

    reader.multi_get_objects.side_effect = multi_get
    reader.get_dynamic_field_object.return_value = {}
    return reader


@pytest.fixture
def sui_usdc_objects():
    sui_object = PYTH_PRICE_INFO_OBJECTS[PYTH_FEED_IDS["SUI"]]
    usdc_object = PYTH_PRICE_INFO_OBJECTS[PYTH_FEED_IDS["USDC"]]
    return [
        price_object(sui_object, PYTH_FEED_IDS["SUI"], 200_000_000),   # 2.00
        price_object(usdc_object, PYTH_FEED_IDS["USDC"], 100_000_000),  # 1.00
    ]


# =============================================================================
# Cross-rate Tests
# =============================================================================

class TestUsdPrice:
    """Tests for route evaluation."""

    def test_direct(self):
        observations = {"aa": _obs("aa", "1.5")}
        assert usd_price(DirectFeed("aa"), observations) == Decimal("1.5")

    def test_routed_multiplies_legs(self):
        observations = {"aa": _obs("aa", "0.5"), "bb": _obs("bb", "4")}
        assert usd_price(RoutedFeed("aa", "bb"), observations) == Decimal("2.0")

    def test_missing_leg(self):
        with pytest.raises(OracleStalenessError):
            usd_price(RoutedFeed("aa", "bb"), {"aa": _obs("aa", "1")})

    def test_type_name_key_strips_prefix(self):
        key = type_name_key("0x2::sui::SUI")
        assert key == "0" * 63 + "2::sui::SUI"


def _obs(feed_id, price):
    return PriceObservation(
        feed_id=feed_id,
        price=Decimal(price),
        conf=Decimal(0),
        publish_time=NOW,
        attestation_time=NOW,
        arrival_time=NOW,
    )


# =============================================================================
# Resolver Tests
# =============================================================================

class TestOracleResolver:
    """Tests for OracleResolver against a fake reader."""

    @pytest.mark.asyncio
    async def test_resolve_pair_with_static_routes(self, sui_usdc_objects):
        resolver = OracleResolver(make_reader(sui_usdc_objects), clock=lambda: NOW)

        pair = await resolver.resolve_pair(SUI_TYPE, USDC_TYPE, 9, 6)

        assert pair.input_usd == Decimal("2")
        assert pair.output_usd == Decimal("1")
        assert pair.ratio == Decimal("2")
        assert pair.input_objects.price_info == pair.input_objects.intermediate

    @pytest.mark.asyncio
    async def test_stale_price_rejected(self, sui_usdc_objects):
        resolver = OracleResolver(make_reader(sui_usdc_objects), max_age_seconds=60, clock=lambda: NOW + 120)

        with pytest.raises(OracleStalenessError) as exc_info:
            await resolver.resolve_pair(SUI_TYPE, USDC_TYPE, 9, 6)

        assert exc_info.value.age_seconds > 60

    @pytest.mark.asyncio
    async def test_skew_rejected(self):
        sui_object = PYTH_PRICE_INFO_OBJECTS[SUI_USD_FEED_ID]
        objects = [price_object(sui_object, SUI_USD_FEED_ID, 100, attestation=NOW - 100, arrival=NOW - 1)]
        resolver = OracleResolver(make_reader(objects), max_skew_seconds=30, clock=lambda: NOW)

        with pytest.raises(OracleStalenessError):
            await resolver.observe([SUI_USD_FEED_ID])

    @pytest.mark.asyncio
    async def test_non_positive_price_rejected(self):
        sui_object = PYTH_PRICE_INFO_OBJECTS[SUI_USD_FEED_ID]
        objects = [price_object(sui_object, SUI_USD_FEED_ID, -5)]
        resolver = OracleResolver(make_reader(objects), clock=lambda: NOW)

        with pytest.raises(OracleStalenessError):
            await resolver.observe([SUI_USD_FEED_ID])

    @pytest.mark.asyncio
    async def test_feed_mismatch_rejected(self):
        sui_object = PYTH_PRICE_INFO_OBJECTS[SUI_USD_FEED_ID]
        objects = [price_object(sui_object, PYTH_FEED_IDS["USDC"], 100)]
        resolver = OracleResolver(make_reader(objects), clock=lambda: NOW)

        with pytest.raises(OracleStalenessError):
            await resolver.observe([SUI_USD_FEED_ID])

    @pytest.mark.asyncio
    async def test_unknown_token_has_no_route(self):
        resolver = OracleResolver(make_reader([]), clock=lambda: NOW)

        with pytest.raises(OracleStalenessError):
            await resolver.route_for(FOO_TYPE)

    @pytest.mark.asyncio
    async def test_unknown_quote_currency_is_unusable_feed(self):
        registry = {
            "data": {
                "objectId": "0x77",
                "content": {
                    "dataType": "moveObject",
                    "fields": {"feeds": {"fields": {"id": {"id": "0x88"}}}},
                },
            }
        }
        reader = make_reader([registry])
        reader.get_dynamic_field_object.return_value = {
            "data": {
                "content": {
                    "fields": {
                        "value": {"fields": {"feed_id": list(bytes.fromhex(FOO_FEED)), "quote_currency": 7}},
                    }
                }
            }
        }
        resolver = OracleResolver(reader, registry_id="0x77", clock=lambda: NOW)

        with pytest.raises(OracleStalenessError, match="Unusable registry feed"):
            await resolver.route_for(FOO_TYPE)

    @pytest.mark.asyncio
    async def test_registry_routed_feed(self):
        """A SUI-quoted feed is priced through the SUI/USD leg."""
        registry = {
            "data": {
                "objectId": "0x77",
                "content": {
                    "dataType": "moveObject",
                    "fields": {"feeds": {"fields": {"id": {"id": "0x88"}}}},
                },
            }
        }
        sui_object = PYTH_PRICE_INFO_OBJECTS[SUI_USD_FEED_ID]
        objects = [
            registry,
            price_object(FOO_OBJECT, FOO_FEED, 25, expo=-2),                # 0.25 SUI
            price_object(sui_object, SUI_USD_FEED_ID, 400_000_000),         # 4.00 USD
        ]
        reader = make_reader(objects)
        reader.get_dynamic_field_object.return_value = {
            "data": {
                "content": {
                    "fields": {
                        "value": {"fields": {"feed_id": list(bytes.fromhex(FOO_FEED)), "quote_currency": 1}},
                    }
                }
            }
        }
        resolver = OracleResolver(
            reader,
            registry_id="0x77",
            price_info_overrides={FOO_FEED: FOO_OBJECT},
            clock=lambda: NOW,
        )

        route = await resolver.route_for(FOO_TYPE)
        observations = await resolver.observe(route.feed_ids)

        assert route == RoutedFeed(FOO_FEED, SUI_USD_FEED_ID)
        assert usd_price(route, observations) == Decimal("1.00")
        assert resolver.feed_objects(route).intermediate == sui_object
        reader.get_dynamic_field_object.assert_awaited_once_with("0x88", "0x1::ascii::String", type_name_key(FOO_TYPE))

    @pytest.mark.asyncio
    async def test_routes_are_cached(self, sui_usdc_objects):
        reader = make_reader(sui_usdc_objects)
        resolver = OracleResolver(reader, clock=lambda: NOW)

        first = await resolver.route_for(SUI_TYPE)
        second = await resolver.route_for(SUI_TYPE)

        assert first is second
