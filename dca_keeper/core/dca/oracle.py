"""
Oracle Price Resolver

Resolves a coin's USD price from Pyth PriceInfoObjects, following the
on-chain PriceFeedRegistry route: a direct USD feed, or a feed quoted in
an intermediate currency that is itself priced in USD.

Routes and object ids are static metadata and are cached. Prices are read
fresh on every call.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ...providers.base import ChainReader
from ...providers.sui_rpc import MAX_OBJECTS_PER_REQUEST
from ...sui.bcs import normalize_address, normalize_type
from ..recovery.errors import OracleStalenessError
from .models import (
    PriceFeedRoute,
    PriceObservation,
    RoutedFeed,
    feed_id_hex,
    route_from_registry_fields,
)
from .tokens import SUI_USD_FEED_ID, price_info_object_id, static_route

logger = logging.getLogger(__name__)

ASCII_STRING_TYPE = "0x1::ascii::String"


@dataclass(frozen=True)
class FeedObjects:
    """PriceInfoObject ids passed to `init_trade` for one side of the pair."""
    price_info: str
    intermediate: str


@dataclass(frozen=True)
class PairPrice:
    input_usd: Decimal
    output_usd: Decimal
    input_decimals: int
    output_decimals: int
    observed_at: int
    input_route: PriceFeedRoute
    output_route: PriceFeedRoute
    input_objects: FeedObjects
    output_objects: FeedObjects

    @property
    def ratio(self) -> Decimal:
        """Output units (whole tokens) per whole input token."""
        return self.input_usd / self.output_usd

    def to_dict(self) -> Dict[str, str]:
        return {
            "inputUsd": str(self.input_usd),
            "outputUsd": str(self.output_usd),
            "ratio": str(self.ratio),
            "observedAt": str(self.observed_at),
        }


def type_name_key(coin_type: str) -> str:
    """`std::type_name` form used as registry key: full address, no 0x."""
    return normalize_type(coin_type).replace("0x", "")


def usd_price(route: PriceFeedRoute, observations: Mapping[str, PriceObservation]) -> Decimal:
    """Cross-rate over the route legs: the product of every leg's price."""
    price = Decimal(1)
    for feed_id in route.feed_ids:
        observation = observations.get(feed_id)
        if observation is None:
            raise OracleStalenessError(f"No observation for feed {feed_id[:16]}", feed_id=feed_id)
        price *= observation.price
    return price


class OracleResolver:
    """
    Resolves oracle-bounded prices for DCA pairs.

    Example usage:
        resolver = OracleResolver(client, registry_id="0x...")
        pair = await resolver.resolve_pair(in_type, out_type, 6, 9)
    """

    def __init__(
        self,
        reader: ChainReader,
        registry_id: Optional[str] = None,
        price_info_overrides: Optional[Mapping[str, str]] = None,
        max_age_seconds: int = 60,
        max_skew_seconds: int = 30,
        concurrency: int = 10,
        clock: Callable[[], float] = time.time,
    ):
        self.reader = reader
        self.registry_id = normalize_address(registry_id) if registry_id else None
        self.price_info_overrides = dict(price_info_overrides or {})
        self.max_age_seconds = max_age_seconds
        self.max_skew_seconds = max_skew_seconds
        self._semaphore = asyncio.Semaphore(concurrency)
        self._clock = clock
        self._routes: Dict[str, PriceFeedRoute] = {}
        self._feeds_table_id: Optional[str] = None
        self._sui_usd_feed_id: str = SUI_USD_FEED_ID

    # ---------------------------
    # Routes
    # ---------------------------
    async def _load_registry(self) -> Optional[str]:
        if self._feeds_table_id or not self.registry_id:
            return self._feeds_table_id
        responses = await self.reader.multi_get_objects([self.registry_id])
        fields = (((responses or [{}])[0].get("data") or {}).get("content") or {}).get("fields") or {}
        feeds = fields.get("feeds") or {}
        table_id = ((feeds.get("fields") or {}).get("id") or {}).get("id")
        if fields.get("sui_usd_feed_id"):
            self._sui_usd_feed_id = feed_id_hex(fields["sui_usd_feed_id"])
        self._feeds_table_id = table_id
        return table_id

    async def route_for(self, coin_type: str) -> PriceFeedRoute:
        """Registry route for `coin_type`, falling back to the bundled token list."""
        key = type_name_key(coin_type)
        if key in self._routes:
            return self._routes[key]

        route: Optional[PriceFeedRoute] = None
        table_id = await self._load_registry()
        if table_id:
            response = await self.reader.get_dynamic_field_object(table_id, ASCII_STRING_TYPE, key)
            value = (((response or {}).get("data") or {}).get("content") or {}).get("fields", {}).get("value")
            if value is not None:
                try:
                    route = route_from_registry_fields(value, self._sui_usd_feed_id)
                except (KeyError, TypeError, ValueError) as e:
                    raise OracleStalenessError(f"Unusable registry feed for {coin_type}: {e}") from e

        if route is None:
            route = static_route(coin_type)
        if route is None:
            raise OracleStalenessError(f"No price feed registered for {coin_type}")

        self._routes[key] = route
        return route

    def feed_objects(self, route: PriceFeedRoute) -> FeedObjects:
        """Object ids for `init_trade`; a direct feed is its own intermediate."""
        primary = self._object_id(route.feed_id)
        if isinstance(route, RoutedFeed):
            return FeedObjects(primary, self._object_id(route.intermediate_feed_id))
        return FeedObjects(primary, primary)

    def _object_id(self, feed_id: str) -> str:
        object_id = price_info_object_id(feed_id, self.price_info_overrides)
        if not object_id:
            raise OracleStalenessError(f"No PriceInfoObject known for feed {feed_id[:16]}", feed_id=feed_id)
        return object_id

    # ---------------------------
    # Observations
    # ---------------------------
    async def observe(self, feed_ids: Iterable[str]) -> Dict[str, PriceObservation]:
        """Read and validate the current observation for each feed."""
        unique = list(dict.fromkeys(feed_ids))
        object_ids = {feed_id: self._object_id(feed_id) for feed_id in unique}
        ids = list(object_ids.values())
        chunks = [ids[i:i + MAX_OBJECTS_PER_REQUEST] for i in range(0, len(ids), MAX_OBJECTS_PER_REQUEST)]

        async def fetch(chunk: List[str]) -> List[dict]:
            async with self._semaphore:
                return await self.reader.multi_get_objects(chunk)

        results = await asyncio.gather(*(fetch(chunk) for chunk in chunks))
        by_object: Dict[str, PriceObservation] = {}
        for response in (r for chunk_result in results for r in chunk_result):
            if not (response.get("data") or {}).get("content"):
                continue
            observation = PriceObservation.from_object(response)
            by_object[normalize_address(observation.object_id or "0x0")] = observation

        now = int(self._clock())
        observations: Dict[str, PriceObservation] = {}
        for feed_id, object_id in object_ids.items():
            observation = by_object.get(normalize_address(object_id))
            if observation is None:
                raise OracleStalenessError(f"PriceInfoObject {object_id} not found", feed_id=feed_id)
            self._check(feed_id, observation, now)
            observations[feed_id] = observation
        return observations

    def _check(self, feed_id: str, observation: PriceObservation, now: int) -> None:
        if observation.feed_id and observation.feed_id != feed_id:
            raise OracleStalenessError(
                f"PriceInfoObject holds feed {observation.feed_id[:16]}, expected {feed_id[:16]}",
                feed_id=feed_id,
            )
        age = now - observation.arrival_time
        if age > self.max_age_seconds:
            raise OracleStalenessError(
                f"Feed {feed_id[:16]} is {age}s old (max {self.max_age_seconds}s)",
                feed_id=feed_id,
                age_seconds=age,
            )
        skew = abs(observation.arrival_time - observation.attestation_time)
        if skew > self.max_skew_seconds:
            raise OracleStalenessError(
                f"Feed {feed_id[:16]} attestation/arrival skew {skew}s (max {self.max_skew_seconds}s)",
                feed_id=feed_id,
                age_seconds=age,
            )
        if observation.price <= 0:
            raise OracleStalenessError(f"Feed {feed_id[:16]} reported non-positive price", feed_id=feed_id)

    # ---------------------------
    # Pair resolution
    # ---------------------------
    async def routes_for_pair(self, input_type: str, output_type: str) -> Tuple[PriceFeedRoute, PriceFeedRoute]:
        return await self.route_for(input_type), await self.route_for(output_type)

    async def resolve_pair(
        self,
        input_type: str,
        output_type: str,
        input_decimals: int,
        output_decimals: int,
    ) -> PairPrice:
        input_route, output_route = await self.routes_for_pair(input_type, output_type)
        observations = await self.observe(input_route.feed_ids + output_route.feed_ids)
        pair = PairPrice(
            input_usd=usd_price(input_route, observations),
            output_usd=usd_price(output_route, observations),
            input_decimals=input_decimals,
            output_decimals=output_decimals,
            observed_at=min(o.arrival_time for o in observations.values()),
            input_route=input_route,
            output_route=output_route,
            input_objects=self.feed_objects(input_route),
            output_objects=self.feed_objects(output_route),
        )
        logger.debug(
            "Resolved %s -> %s at ratio %s",
            input_type, output_type, pair.ratio,
        )
        return pair

