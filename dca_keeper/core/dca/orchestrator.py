"""
Trade Orchestrator

Composes the all-or-nothing trade transaction for one due order:

    init_trade -> coin::from_balance -> swap -> coin::value -> resolve_trade
    -> transfer output to owner, reward to executor

`init_trade` hands back a promise that must be consumed by `resolve_trade`
in the same transaction. `TradeScope` models that as a two-phase state
machine so a promise can neither leak nor be resolved twice; any error while
a trade is open aborts the scope and the half-built transaction is dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ...sui.bcs import normalize_address
from ...sui.transactions import Argument, ProgrammableTransaction
from ..recovery.errors import TradeScopeError
from .accounting import (
    expected_output_amount,
    fee_amount,
    min_output_amount,
    net_trade_amount,
    price_bound_violation,
    validate_reward_claim,
)
from .models import DCAAccount, SkipReason
from .oracle import PairPrice
from .swap import SwapAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TradeQuote:
    """Sizing of one order, derived from the account snapshot and fresh oracle prices."""
    dca_id: str
    gross_input: int
    fee: int
    net_input: int
    expected_output: int
    min_output: int
    slippage_bps: int
    reward_claim: int
    input_usd: Optional[Decimal] = None
    output_usd: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dcaId": self.dca_id,
            "grossInput": str(self.gross_input),
            "fee": str(self.fee),
            "netInput": str(self.net_input),
            "expectedOutput": str(self.expected_output),
            "minOutput": str(self.min_output),
            "slippageBps": self.slippage_bps,
            "rewardClaim": str(self.reward_claim),
            "inputUsd": str(self.input_usd) if self.input_usd is not None else None,
            "outputUsd": str(self.output_usd) if self.output_usd is not None else None,
        }


def quote_trade(
    account: DCAAccount,
    pair: Optional[PairPrice],
    reward_claim: Optional[int] = None,
) -> TradeQuote:
    """
    Size the next order of `account` at the given oracle prices.

    Without prices (legacy init) the output bound is left to the chain and
    expected and minimum output are zero.
    """
    snapshot = account.config_snapshot
    gross = account.split_allocation
    net = net_trade_amount(gross, snapshot.fee_bps)
    expected = 0
    if pair is not None:
        expected = expected_output_amount(
            net, pair.input_usd, pair.output_usd, account.input_decimals, account.output_decimals
        )
    slippage = account.effective_slippage_bps
    return TradeQuote(
        dca_id=account.id,
        gross_input=gross,
        fee=fee_amount(gross, snapshot.fee_bps),
        net_input=net,
        expected_output=expected,
        min_output=min_output_amount(expected, slippage),
        slippage_bps=slippage,
        reward_claim=validate_reward_claim(reward_claim, snapshot, dca_id=account.id),
        input_usd=pair.input_usd if pair is not None else None,
        output_usd=pair.output_usd if pair is not None else None,
    )


def check_price_bounds(account: DCAAccount, quote: TradeQuote) -> Optional[SkipReason]:
    if quote.input_usd is None:
        return None
    return price_bound_violation(
        quote.net_input,
        quote.expected_output,
        account.trade_params.min_price,
        account.trade_params.max_price,
    )


class ScopeState(str, Enum):
    """Trade scope lifecycle."""
    IDLE = "idle"
    INITIATED = "initiated"
    SETTLED = "settled"
    ABORTED = "aborted"


class TradePromise:
    """Single-use handle for the promise returned by `init_trade`."""

    def __init__(self, scope: "TradeScope", argument: Argument, dca_id: str, net_input: int, min_output: int):
        self._scope = scope
        self.argument = argument
        self.dca_id = dca_id
        self.net_input = net_input
        self.min_output = min_output
        self.consumed = False

    def __repr__(self) -> str:
        return f"TradePromise(dca_id={self.dca_id!r}, consumed={self.consumed})"


class TradeScope:
    """
    Context manager around one initiate/resolve pair.

    Example usage:
        with TradeScope(tx, account, package_id, ...) as scope:
            balance, promise = scope.initiate(pair, quote)
            ...
            reward = scope.resolve(promise, output_amount, quote.reward_claim)
    """

    def __init__(
        self,
        tx: ProgrammableTransaction,
        account: DCAAccount,
        package_id: str,
        fee_tracker_id: str,
        registry_id: str,
        clock_id: str = "0x6",
        legacy: bool = False,
    ):
        self.tx = tx
        self.account = account
        self.package_id = normalize_address(package_id)
        self.fee_tracker_id = fee_tracker_id
        self.registry_id = registry_id
        self.clock_id = clock_id
        self.legacy = legacy
        self.state = ScopeState.IDLE
        self._promise: Optional[TradePromise] = None

    def __enter__(self) -> "TradeScope":
        if self.state != ScopeState.IDLE:
            raise TradeScopeError("Trade scope cannot be re-entered", dca_id=self.account.id)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.state = ScopeState.ABORTED
            return False
        if self.state == ScopeState.INITIATED:
            self.state = ScopeState.ABORTED
            raise TradeScopeError("Trade promise was not resolved", dca_id=self.account.id)
        return False

    def _target(self, function: str) -> str:
        return f"{self.package_id}::dca::{function}"

    def initiate(self, pair: Optional[PairPrice], quote: TradeQuote) -> Tuple[Argument, TradePromise]:
        """Append `init_trade`; returns (input balance, promise)."""
        if self.state != ScopeState.IDLE:
            current = self.state
            self.state = ScopeState.ABORTED
            raise TradeScopeError(f"Cannot initiate from state {current.value}", dca_id=self.account.id)

        tx = self.tx
        dca = tx.shared_object(self.account.id, mutable=True)
        clock = tx.shared_object(self.clock_id, mutable=False)
        if self.legacy:
            result = tx.move_call(
                self._target("init_trade_legacy"),
                arguments=[dca, clock],
                type_arguments=self.account.type_arguments,
            )
        else:
            if pair is None:
                self.state = ScopeState.ABORTED
                raise TradeScopeError("Oracle prices are required for init_trade", dca_id=self.account.id)
            result = tx.move_call(
                self._target("init_trade"),
                arguments=[
                    dca,
                    clock,
                    tx.shared_object(self.registry_id, mutable=False),
                    tx.shared_object(pair.input_objects.price_info, mutable=False),
                    tx.shared_object(pair.input_objects.intermediate, mutable=False),
                    tx.shared_object(pair.output_objects.price_info, mutable=False),
                    tx.shared_object(pair.output_objects.intermediate, mutable=False),
                ],
                type_arguments=self.account.type_arguments,
            )

        self._promise = TradePromise(self, result[1], self.account.id, quote.net_input, quote.min_output)
        self.state = ScopeState.INITIATED
        return result[0], self._promise

    def resolve(self, promise: TradePromise, output_amount: Argument, reward_claim: int) -> Argument:
        """Append `resolve_trade`, consuming the promise; returns the reward coin."""
        if self.state != ScopeState.INITIATED or promise is not self._promise or promise._scope is not self:
            self.state = ScopeState.ABORTED
            raise TradeScopeError("Promise does not belong to an open trade", dca_id=self.account.id)
        if promise.consumed:
            self.state = ScopeState.ABORTED
            raise TradeScopeError("Promise already resolved", dca_id=self.account.id)
        validate_reward_claim(reward_claim, self.account.config_snapshot, dca_id=self.account.id)

        tx = self.tx
        reward = tx.move_call(
            self._target("resolve_trade"),
            arguments=[
                tx.shared_object(self.account.id, mutable=True),
                tx.shared_object(self.fee_tracker_id, mutable=True),
                promise.argument,
                output_amount,
                tx.pure_u64(reward_claim),
            ],
            type_arguments=self.account.type_arguments,
        )
        promise.consumed = True
        self.state = ScopeState.SETTLED
        return reward


@dataclass
class ComposedTrade:
    tx: ProgrammableTransaction
    quote: TradeQuote
    account: DCAAccount


class TradeOrchestrator:
    """Builds trade transactions for due orders."""

    def __init__(
        self,
        package_id: str,
        fee_tracker_id: str,
        registry_id: str,
        swap: SwapAdapter,
        clock_id: str = "0x6",
        use_legacy_init: bool = False,
    ):
        self.package_id = normalize_address(package_id)
        self.fee_tracker_id = normalize_address(fee_tracker_id)
        self.registry_id = normalize_address(registry_id)
        self.clock_id = normalize_address(clock_id)
        self.swap = swap
        self.use_legacy_init = use_legacy_init

    @classmethod
    def from_settings(cls, settings: Any, swap: SwapAdapter) -> "TradeOrchestrator":
        return cls(
            package_id=settings.dca_package_id,
            fee_tracker_id=settings.fee_tracker_id,
            registry_id=settings.price_feed_registry_id,
            swap=swap,
            clock_id=settings.clock_id,
            use_legacy_init=settings.use_legacy_init,
        )

    def compose(
        self,
        account: DCAAccount,
        pair: Optional[PairPrice],
        executor: str,
        reward_claim: Optional[int] = None,
    ) -> ComposedTrade:
        """
        Build the trade transaction for the next order of `account`.

        Raises RewardClaimExceededError for a claim above the snapshot and
        TradeScopeError if the composition is inconsistent; in both cases no
        transaction is returned.
        """
        quote = quote_trade(account, pair, reward_claim)
        tx = ProgrammableTransaction()

        with TradeScope(
            tx,
            account,
            self.package_id,
            self.fee_tracker_id,
            self.registry_id,
            self.clock_id,
            legacy=self.use_legacy_init,
        ) as scope:
            balance, promise = scope.initiate(pair, quote)
            coin_in = tx.move_call(
                "0x2::coin::from_balance",
                arguments=[balance],
                type_arguments=[account.input_type],
            )
            coin_out = self.swap.add_swap(tx, coin_in, account.input_type, account.output_type)
            output_amount = tx.move_call(
                "0x2::coin::value",
                arguments=[coin_out],
                type_arguments=[account.output_type],
            )
            reward = scope.resolve(promise, output_amount, quote.reward_claim)
            tx.transfer_objects([coin_out], account.owner)
            tx.transfer_objects([reward], executor)

        logger.debug(
            "Composed trade for %s: net %d, min output %d, reward %d",
            account.id, quote.net_input, quote.min_output, quote.reward_claim,
        )
        return ComposedTrade(tx=tx, quote=quote, account=account)
