"""
DCA Account Models

Snapshots of on-chain DCA state as the keeper sees it: accounts, their
immutable config snapshot, the admin-controlled global config, oracle feed
routes and the protocol events used for reconciliation.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple, Union

from ...sui.bcs import normalize_address, normalize_type, split_type_args

MS_PER_SECOND = 1000
BPS_DENOMINATOR = 10_000

logger = logging.getLogger(__name__)

_DCA_TYPE_RE = re.compile(r"::dca::DCA<(?P<args>.+)>$")


class TimeScale(IntEnum):
    """On-chain time_scale tag."""
    SECONDS = 0
    MINUTES = 1
    HOURS = 2
    DAYS = 3
    WEEKS = 4
    MONTHS = 5

    @property
    def seconds(self) -> int:
        return _TIME_SCALE_SECONDS[self]


_TIME_SCALE_SECONDS = {
    TimeScale.SECONDS: 1,
    TimeScale.MINUTES: 60,
    TimeScale.HOURS: 3_600,
    TimeScale.DAYS: 86_400,
    TimeScale.WEEKS: 604_800,
    TimeScale.MONTHS: 2_592_000,  # nominal 30-day month
}


class QuoteCurrency(IntEnum):
    """Quote currency of a registry price feed."""
    USD = 0
    SUI = 1


class DeactivationReason(IntEnum):
    """Reason code carried by DCADeactivatedEvent."""
    COMPLETED_ALL_ORDERS = 0
    OWNER_CANCELLED = 1
    INSUFFICIENT_FUNDS = 2
    INSUFFICIENT_REWARD = 3
    REDEEMED = 4

    @property
    def description(self) -> str:
        return self.name.lower().replace("_", " ")


class SkipReason(str, Enum):
    """Reason an account was not executed this cycle."""
    INACTIVE = "inactive"
    NO_REMAINING_ORDERS = "no_remaining_orders"
    NOT_YET_DUE = "not_yet_due"
    INSUFFICIENT_INPUT = "insufficient_input"
    INSUFFICIENT_REWARD = "insufficient_reward"
    QUARANTINED = "quarantined"
    ORACLE_STALE = "oracle_stale"
    PRICE_ABOVE_MAX = "price_above_max"
    PRICE_BELOW_MIN = "price_below_min"
    UNECONOMIC = "uneconomic"
    BUSY = "busy"


class OrderOutcome(str, Enum):
    """Terminal outcome of one order in one cycle."""
    SETTLED = "settled"
    DRY_RUN = "dry_run"
    ALREADY_RESOLVED = "already_resolved"
    NOT_DUE = "not_due"
    SKIPPED = "skipped"
    FAILED = "failed"


def _int(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    if isinstance(value, dict):
        # Balance<T> / wrapped numeric structs
        inner = value.get("fields", value)
        return _int(inner.get("value"), default)
    return int(value)


def _option(value: Any) -> Any:
    """Unwrap Move Option<T> in either inline or `{fields: {vec: [...]}}` form."""
    if value is None:
        return None
    if isinstance(value, dict):
        inner = value.get("fields", value)
        if "vec" in inner:
            vec = inner["vec"]
            return vec[0] if vec else None
    return value


def _fields(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict) and "fields" in value:
        return value["fields"]
    return value or {}


def _enum_or_none(enum_cls: Any, value: int) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        return None


def feed_id_hex(value: Any) -> str:
    """Pyth feed ids arrive as byte arrays, hex strings, or PriceIdentifier structs."""
    if isinstance(value, dict):
        inner = _fields(value)
        return feed_id_hex(inner.get("bytes", inner.get("feed_id")))
    if isinstance(value, list):
        return bytes(int(b) for b in value).hex()
    text = str(value).lower()
    return text[2:] if text.startswith("0x") else text


def parse_dca_type(object_type: str) -> Tuple[str, str]:
    """Return (input_type, output_type) from `<pkg>::dca::DCA<In, Out>`."""
    match = _DCA_TYPE_RE.search(object_type)
    if not match:
        raise ValueError(f"Not a DCA object type: {object_type}")
    args = split_type_args(match.group("args"))
    if len(args) != 2:
        raise ValueError(f"DCA type must have two type arguments: {object_type}")
    return normalize_type(args[0]), normalize_type(args[1])


@dataclass(frozen=True)
class OraclePrice:
    """User price bound: `base_val` input units buy `quote_val` output units."""
    base_val: int
    quote_val: int

    @classmethod
    def from_fields(cls, data: Any) -> Optional[OraclePrice]:
        data = _option(data)
        if data is None:
            return None
        fields = _fields(data)
        return cls(base_val=_int(fields.get("base_val")), quote_val=_int(fields.get("quote_val")))


@dataclass(frozen=True)
class TradeParams:
    """Per-account trade constraints."""
    min_price: Optional[OraclePrice] = None
    max_price: Optional[OraclePrice] = None
    slippage_bps: Optional[int] = None

    @classmethod
    def from_fields(cls, data: Any) -> TradeParams:
        fields = _fields(data)
        slippage = _option(fields.get("slippage_bps"))
        return cls(
            min_price=OraclePrice.from_fields(fields.get("min_price")),
            max_price=OraclePrice.from_fields(fields.get("max_price")),
            slippage_bps=int(slippage) if slippage is not None else None,
        )


@dataclass(frozen=True)
class ConfigSnapshot:
    """
    Protocol parameters captured when the account was created.

    Immutable: the keeper derives fees, rewards and default slippage for an
    existing account from this value only, never from the live global config.
    """
    fee_bps: int
    executor_reward_per_trade: int
    default_slippage_bps: int
    treasury: str = "0x0"
    max_slippage_bps: Optional[int] = None

    @classmethod
    def from_fields(cls, data: Any) -> ConfigSnapshot:
        fields = _fields(data)
        max_slippage = fields.get("max_slippage_bps")
        return cls(
            fee_bps=_int(fields.get("fee_bps")),
            executor_reward_per_trade=_int(fields.get("executor_reward_per_trade")),
            default_slippage_bps=_int(fields.get("default_slippage_bps")),
            treasury=fields.get("treasury") or "0x0",
            max_slippage_bps=int(max_slippage) if max_slippage is not None else None,
        )

    @classmethod
    def from_global(cls, config: GlobalConfig) -> ConfigSnapshot:
        """Copy the live global config by value, as account creation does."""
        return cls(
            fee_bps=config.fee_bps,
            executor_reward_per_trade=config.executor_reward_per_trade,
            default_slippage_bps=config.default_slippage_bps,
            treasury=config.treasury,
            max_slippage_bps=config.max_slippage_bps,
        )


@dataclass(frozen=True)
class DCAAccount:
    """Point-in-time snapshot of one on-chain DCA<Input, Output> object."""
    id: str
    owner: str
    delegatee: str
    input_type: str
    output_type: str
    start_time_ms: int
    last_time_ms: int
    every: int
    time_scale: TimeScale
    initial_orders: int
    remaining_orders: int
    input_balance: int
    split_allocation: int
    trade_params: TradeParams
    active: bool
    executor_reward_balance: int
    config_snapshot: ConfigSnapshot
    accepted_terms_version: int = 0
    input_decimals: int = 0
    output_decimals: int = 0
    version: int = 0
    object_version: Optional[int] = None

    def __post_init__(self) -> None:
        if self.remaining_orders < 0:
            raise ValueError("remaining_orders cannot be negative")
        max_slippage = self.config_snapshot.max_slippage_bps
        override = self.trade_params.slippage_bps
        if max_slippage is not None and override is not None and override > max_slippage:
            raise ValueError(
                f"slippage override {override} exceeds snapshot max {max_slippage}"
            )

    @property
    def effective_slippage_bps(self) -> int:
        if self.trade_params.slippage_bps is not None:
            return self.trade_params.slippage_bps
        return self.config_snapshot.default_slippage_bps

    @property
    def interval_seconds(self) -> int:
        return self.every * self.time_scale.seconds

    @property
    def type_arguments(self) -> List[str]:
        return [self.input_type, self.output_type]

    @classmethod
    def from_object(cls, response: Dict[str, Any]) -> DCAAccount:
        """Build from a `sui_getObject` / `sui_multiGetObjects` entry with showContent."""
        data = response.get("data") or {}
        content = data.get("content") or {}
        if content.get("dataType") != "moveObject":
            raise ValueError(f"Object {data.get('objectId')} has no Move content")
        input_type, output_type = parse_dca_type(content.get("type") or data.get("type") or "")
        fields = content["fields"]
        object_id = data.get("objectId") or _fields(fields.get("id")).get("id")

        return cls(
            id=normalize_address(object_id),
            owner=fields["owner"],
            delegatee=fields.get("delegatee") or fields["owner"],
            input_type=input_type,
            output_type=output_type,
            start_time_ms=_int(fields.get("start_time_ms")),
            last_time_ms=_int(fields.get("last_time_ms")),
            every=_int(fields.get("every")),
            time_scale=TimeScale(_int(fields.get("time_scale"))),
            initial_orders=_int(fields.get("initial_orders")),
            remaining_orders=_int(fields.get("remaining_orders")),
            input_balance=_int(fields.get("input_balance")),
            split_allocation=_int(fields.get("split_allocation")),
            trade_params=TradeParams.from_fields(fields.get("trade_params")),
            active=bool(fields.get("active")),
            executor_reward_balance=_int(fields.get("executor_reward_balance")),
            config_snapshot=ConfigSnapshot.from_fields(fields.get("config_snapshot")),
            accepted_terms_version=_int(fields.get("accepted_terms_version")),
            input_decimals=_int(fields.get("input_decimals")),
            output_decimals=_int(fields.get("output_decimals")),
            version=_int(fields.get("version")),
            object_version=_int(data.get("version")) if data.get("version") is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner,
            "delegatee": self.delegatee,
            "inputType": self.input_type,
            "outputType": self.output_type,
            "lastTimeMs": self.last_time_ms,
            "every": self.every,
            "timeScale": self.time_scale.name.lower(),
            "remainingOrders": self.remaining_orders,
            "initialOrders": self.initial_orders,
            "inputBalance": str(self.input_balance),
            "splitAllocation": str(self.split_allocation),
            "executorRewardBalance": str(self.executor_reward_balance),
            "active": self.active,
            "feeBps": self.config_snapshot.fee_bps,
            "effectiveSlippageBps": self.effective_slippage_bps,
        }


@dataclass(frozen=True)
class GlobalConfig:
    """Admin-controlled protocol config. Only read for new-account creation."""
    fee_bps: int
    executor_reward_per_trade: int
    max_orders_per_account: int
    min_funding_per_trade: int
    default_slippage_bps: int
    max_slippage_bps: int
    min_interval_seconds: int
    treasury: str
    paused: bool = False
    executor_whitelist_enabled: bool = False
    whitelisted_executors: Tuple[str, ...] = ()
    version: int = 0

    @classmethod
    def from_object(cls, response: Dict[str, Any]) -> GlobalConfig:
        fields = ((response.get("data") or {}).get("content") or {}).get("fields") or {}
        return cls(
            fee_bps=_int(fields.get("fee_bps")),
            executor_reward_per_trade=_int(fields.get("executor_reward_per_trade")),
            max_orders_per_account=_int(fields.get("max_orders_per_account")),
            min_funding_per_trade=_int(fields.get("min_funding_per_trade")),
            default_slippage_bps=_int(fields.get("default_slippage_bps")),
            max_slippage_bps=_int(fields.get("max_slippage_bps")),
            min_interval_seconds=_int(fields.get("min_interval_seconds")),
            treasury=fields.get("treasury") or "0x0",
            paused=bool(fields.get("paused")),
            executor_whitelist_enabled=bool(fields.get("executor_whitelist_enabled")),
            whitelisted_executors=tuple(
                normalize_address(a) for a in fields.get("whitelisted_executors") or []
            ),
            version=_int(fields.get("version")),
        )

    def allows_executor(self, address: str) -> bool:
        if not self.executor_whitelist_enabled:
            return True
        return normalize_address(address) in self.whitelisted_executors


# ---------------------------------------------------------------------------
# Oracle routing
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DirectFeed:
    """Token quoted directly in USD."""
    feed_id: str

    @property
    def feed_ids(self) -> Tuple[str, ...]:
        return (self.feed_id,)


@dataclass(frozen=True)
class RoutedFeed:
    """Token quoted in an intermediate currency that has its own USD feed."""
    feed_id: str
    intermediate_feed_id: str

    @property
    def feed_ids(self) -> Tuple[str, ...]:
        return (self.feed_id, self.intermediate_feed_id)


PriceFeedRoute = Union[DirectFeed, RoutedFeed]


def route_from_registry_fields(data: Any, sui_usd_feed_id: Optional[str] = None) -> PriceFeedRoute:
    """Build a route from a registry `PriceFeed { feed_id, quote_currency, intermediate_feed_id }`."""
    fields = _fields(data)
    feed_id = feed_id_hex(fields["feed_id"])
    quote = QuoteCurrency(_int(fields.get("quote_currency")))
    if quote == QuoteCurrency.USD:
        return DirectFeed(feed_id)
    intermediate = _option(fields.get("intermediate_feed_id"))
    intermediate_id = feed_id_hex(intermediate) if intermediate is not None else sui_usd_feed_id
    if not intermediate_id:
        raise ValueError(f"Routed feed {feed_id} has no intermediate USD feed")
    return RoutedFeed(feed_id, intermediate_id)


@dataclass(frozen=True)
class PriceObservation:
    """One Pyth PriceInfoObject reading."""
    feed_id: str
    price: Decimal
    conf: Decimal
    publish_time: int
    attestation_time: int
    arrival_time: int
    object_id: Optional[str] = None

    @classmethod
    def from_object(cls, response: Dict[str, Any]) -> PriceObservation:
        data = response.get("data") or {}
        fields = ((data.get("content") or {}).get("fields")) or {}
        info = _fields(fields.get("price_info"))
        feed = _fields(info.get("price_feed"))
        price = _fields(feed.get("price"))
        expo = _signed(price.get("expo"))
        return cls(
            feed_id=feed_id_hex(feed.get("price_identifier")),
            price=Decimal(_signed(price.get("price"))).scaleb(expo),
            conf=Decimal(_int(price.get("conf"))).scaleb(expo),
            publish_time=_int(price.get("timestamp")),
            attestation_time=_int(info.get("attestation_time")),
            arrival_time=_int(info.get("arrival_time")),
            object_id=data.get("objectId"),
        )


def _signed(value: Any) -> int:
    """Pyth I64 is `{negative: bool, magnitude: u64}`."""
    fields = _fields(value)
    magnitude = _int(fields.get("magnitude"))
    return -magnitude if fields.get("negative") else magnitude


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DCACreatedEvent:
    dca_id: str
    owner: str
    delegatee: str
    total_orders: int
    input_amount: int
    split_allocation: int
    every: int
    time_scale: TimeScale

    @classmethod
    def from_event(cls, event: Dict[str, Any]) -> DCACreatedEvent:
        parsed = event.get("parsedJson") or {}
        return cls(
            dca_id=normalize_address(parsed["id"]),
            owner=parsed.get("owner", ""),
            delegatee=parsed.get("delegatee", ""),
            total_orders=_int(parsed.get("total_orders")),
            input_amount=_int(parsed.get("input_amount")),
            split_allocation=_int(parsed.get("split_allocation")),
            every=_int(parsed.get("every")),
            time_scale=TimeScale(_int(parsed.get("time_scale"))),
        )


@dataclass(frozen=True)
class TradeInitiatedEvent:
    dca_id: str
    executor: str
    input_amount: int
    fee_amount: int
    remaining_orders: int
    min_output: Optional[int] = None

    @classmethod
    def from_event(cls, event: Dict[str, Any]) -> TradeInitiatedEvent:
        parsed = event.get("parsedJson") or {}
        return cls(
            dca_id=normalize_address(parsed["dca_id"]),
            executor=parsed.get("executor", ""),
            input_amount=_int(parsed.get("input_amount")),
            fee_amount=_int(parsed.get("fee_amount")),
            remaining_orders=_int(parsed.get("remaining_orders")),
            min_output=_int(parsed["min_output"]) if parsed.get("min_output") is not None else None,
        )


@dataclass(frozen=True)
class TradeCompletedEvent:
    dca_id: str
    executor: str
    output_amount: int
    executor_reward: int
    active: bool

    @classmethod
    def from_event(cls, event: Dict[str, Any]) -> TradeCompletedEvent:
        parsed = event.get("parsedJson") or {}
        return cls(
            dca_id=normalize_address(parsed["dca_id"]),
            executor=parsed.get("executor", ""),
            output_amount=_int(parsed.get("output_amount")),
            executor_reward=_int(parsed.get("executor_reward")),
            active=bool(parsed.get("active")),
        )


@dataclass(frozen=True)
class DCADeactivatedEvent:
    dca_id: str
    reason: Optional[DeactivationReason]
    remaining_orders: int = 0
    reason_code: Optional[int] = None

    @classmethod
    def from_event(cls, event: Dict[str, Any]) -> DCADeactivatedEvent:
        parsed = event.get("parsedJson") or {}
        code = _int(parsed.get("reason"))
        return cls(
            dca_id=normalize_address(parsed["dca_id"]),
            reason=_enum_or_none(DeactivationReason, code),
            remaining_orders=_int(parsed.get("remaining_orders")),
            reason_code=code,
        )


_EVENT_TYPES = {
    "DCACreatedEvent": DCACreatedEvent,
    "TradeInitiatedEvent": TradeInitiatedEvent,
    "TradeCompletedEvent": TradeCompletedEvent,
    "DCADeactivatedEvent": DCADeactivatedEvent,
}

ProtocolEvent = Union[DCACreatedEvent, TradeInitiatedEvent, TradeCompletedEvent, DCADeactivatedEvent]


def parse_protocol_events(events: List[Dict[str, Any]], package_id: str) -> List[ProtocolEvent]:
    """Parse the DCA module's events out of a transaction response; others are ignored."""
    prefix = normalize_address(package_id) + "::dca::"
    parsed: List[ProtocolEvent] = []
    for event in events or []:
        event_type = event.get("type", "")
        head = event_type.split("<", 1)[0]
        try:
            package, module, name = head.split("::")
        except ValueError:
            continue
        if normalize_address(package) + f"::{module}::" != prefix:
            continue
        event_cls = _EVENT_TYPES.get(name)
        if event_cls is None:
            continue
        try:
            parsed.append(event_cls.from_event(event))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring malformed %s: %s", name, e)
    return parsed


@dataclass
class TradeReceipt:
    """What the chain reported for one settled (or simulated) trade."""
    dca_id: str
    digest: Optional[str] = None
    input_amount: Optional[int] = None
    fee_amount: Optional[int] = None
    output_amount: Optional[int] = None
    executor_reward: Optional[int] = None
    remaining_orders: Optional[int] = None
    still_active: Optional[bool] = None
    deactivation_reason: Optional[DeactivationReason] = None
    gas_cost: Optional[int] = None
    events: List[ProtocolEvent] = field(default_factory=list)

    @classmethod
    def from_events(
        cls,
        dca_id: str,
        events: List[ProtocolEvent],
        digest: Optional[str] = None,
        gas_cost: Optional[int] = None,
    ) -> TradeReceipt:
        receipt = cls(dca_id=dca_id, digest=digest, gas_cost=gas_cost)
        for event in events:
            if getattr(event, "dca_id", None) != dca_id:
                continue
            receipt.events.append(event)
            if isinstance(event, TradeInitiatedEvent):
                receipt.input_amount = event.input_amount
                receipt.fee_amount = event.fee_amount
                receipt.remaining_orders = event.remaining_orders
            elif isinstance(event, TradeCompletedEvent):
                receipt.output_amount = event.output_amount
                receipt.executor_reward = event.executor_reward
                receipt.still_active = event.active
            elif isinstance(event, DCADeactivatedEvent):
                receipt.deactivation_reason = event.reason
        return receipt

    @property
    def settled(self) -> bool:
        return any(isinstance(e, TradeCompletedEvent) for e in self.events)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dcaId": self.dca_id,
            "digest": self.digest,
            "inputAmount": self.input_amount,
            "feeAmount": self.fee_amount,
            "outputAmount": self.output_amount,
            "executorReward": self.executor_reward,
            "remainingOrders": self.remaining_orders,
            "active": self.still_active,
            "deactivationReason": self.deactivation_reason.description if self.deactivation_reason is not None else None,
            "gasCost": self.gas_cost,
        }
