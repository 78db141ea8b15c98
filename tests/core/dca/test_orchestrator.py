"""
Tests for the Trade Orchestrator

Quote sizing, the initiate/resolve scope and the composed command sequence.
"""

from decimal import Decimal

import pytest

from dca_keeper.core.dca.models import DirectFeed, OraclePrice, SkipReason, TradeParams
from dca_keeper.core.dca.oracle import FeedObjects, PairPrice
from dca_keeper.core.dca.orchestrator import (
    ScopeState,
    TradeOrchestrator,
    TradeScope,
    check_price_bounds,
    quote_trade,
)
from dca_keeper.core.dca.swap import FlowXSwapAdapter
from dca_keeper.core.recovery.errors import RewardClaimExceededError, TradeScopeError
from dca_keeper.sui.bcs import normalize_address
from dca_keeper.sui.transactions import MoveCall, ProgrammableTransaction, TransferObjects


PACKAGE = normalize_address("0xdca")
FEE_TRACKER = normalize_address("0xfee")
REGISTRY = normalize_address("0x7e9")
EXECUTOR = normalize_address("0xb0b")


@pytest.fixture
def pair():
    """SUI at 2.00 USD into USDC at 1.00 USD."""
    return PairPrice(
        input_usd=Decimal("2"),
        output_usd=Decimal("1"),
        input_decimals=9,
        output_decimals=6,
        observed_at=1_700_000_000,
        input_route=DirectFeed("aa" * 32),
        output_route=DirectFeed("bb" * 32),
        input_objects=FeedObjects("0x11", "0x11"),
        output_objects=FeedObjects("0x12", "0x12"),
    )


@pytest.fixture
def orchestrator():
    swap = FlowXSwapAdapter("0xf10", "0xc0")
    return TradeOrchestrator(PACKAGE, FEE_TRACKER, REGISTRY, swap)


def _functions(tx):
    return [c.function for c in tx.commands if isinstance(c, MoveCall)]


# =============================================================================
# Quote Tests
# =============================================================================

class TestQuote:
    """Tests for quote_trade."""

    def test_quote_from_snapshot(self, make_account, pair):
        account = make_account(split_allocation=1_000_000_000)

        quote = quote_trade(account, pair)

        assert quote.fee == 3_000_000
        assert quote.net_input == 997_000_000
        # 0.997 SUI * 2 USD = 1.994 USDC
        assert quote.expected_output == 1_994_000
        assert quote.min_output == 1_974_060
        assert quote.reward_claim == 25_000_000

    def test_claim_above_snapshot(self, make_account, pair):
        with pytest.raises(RewardClaimExceededError):
            quote_trade(make_account(), pair, reward_claim=30_000_000)

    def test_price_bounds(self, make_account, pair):
        # 1 SUI buys 2 USDC here; in base units 1e9 buys 2e6
        within = TradeParams(min_price=None, max_price=None)
        assert check_price_bounds(make_account(trade_params=within), quote_trade(make_account(), pair)) is None

        too_expensive = TradeParams(max_price=OraclePrice(1_000, 3))
        account = make_account(trade_params=too_expensive)
        assert check_price_bounds(account, quote_trade(account, pair)) == SkipReason.PRICE_ABOVE_MAX

        too_cheap = TradeParams(min_price=OraclePrice(1_000, 1))
        account = make_account(trade_params=too_cheap)
        assert check_price_bounds(account, quote_trade(account, pair)) == SkipReason.PRICE_BELOW_MIN


# =============================================================================
# Scope Tests
# =============================================================================

class TestTradeScope:
    """Tests for the initiate/resolve state machine."""

    def _scope(self, account, legacy=False):
        return TradeScope(ProgrammableTransaction(), account, PACKAGE, FEE_TRACKER, REGISTRY, legacy=legacy)

    def test_unresolved_promise_aborts(self, make_account, pair):
        account = make_account()
        scope = self._scope(account)

        with pytest.raises(TradeScopeError):
            with scope:
                scope.initiate(pair, quote_trade(account, pair))

        assert scope.state == ScopeState.ABORTED

    def test_double_resolve_rejected(self, make_account, pair):
        account = make_account()
        quote = quote_trade(account, pair)
        scope = self._scope(account)

        with pytest.raises(TradeScopeError):
            with scope:
                _, promise = scope.initiate(pair, quote)
                amount = scope.tx.pure_u64(1)
                scope.resolve(promise, amount, quote.reward_claim)
                scope.resolve(promise, amount, quote.reward_claim)

        assert scope.state == ScopeState.ABORTED

    def test_foreign_promise_rejected(self, make_account, pair):
        account = make_account()
        quote = quote_trade(account, pair)
        first = self._scope(account)
        second = self._scope(account)

        with first:
            _, promise = first.initiate(pair, quote)
            with pytest.raises(TradeScopeError):
                with second:
                    second.initiate(pair, quote)
                    second.resolve(promise, second.tx.pure_u64(1), quote.reward_claim)
            first.resolve(promise, first.tx.pure_u64(1), quote.reward_claim)

        assert first.state == ScopeState.SETTLED
        assert second.state == ScopeState.ABORTED

    def test_exception_inside_scope_aborts(self, make_account, pair):
        account = make_account()
        scope = self._scope(account)

        with pytest.raises(RuntimeError):
            with scope:
                scope.initiate(pair, quote_trade(account, pair))
                raise RuntimeError("swap leg failed")

        assert scope.state == ScopeState.ABORTED

    def test_resolve_rechecks_reward(self, make_account, pair):
        account = make_account()
        quote = quote_trade(account, pair)
        scope = self._scope(account)

        with pytest.raises(RewardClaimExceededError):
            with scope:
                _, promise = scope.initiate(pair, quote)
                scope.resolve(promise, scope.tx.pure_u64(1), 30_000_000)

        assert scope.state == ScopeState.ABORTED

    def test_oracle_required_unless_legacy(self, make_account, pair):
        account = make_account()
        quote = quote_trade(account, pair)
        scope = self._scope(account)

        with pytest.raises(TradeScopeError):
            scope.initiate(None, quote)

        legacy = self._scope(account, legacy=True)
        with legacy:
            _, promise = legacy.initiate(None, quote)
            legacy.resolve(promise, legacy.tx.pure_u64(1), quote.reward_claim)

        assert _functions(legacy.tx) == ["init_trade_legacy", "resolve_trade"]


# =============================================================================
# Composition Tests
# =============================================================================

class TestCompose:
    """Tests for full trade composition."""

    def test_command_sequence(self, make_account, pair, orchestrator):
        account = make_account()

        composed = orchestrator.compose(account, pair, EXECUTOR)

        assert _functions(composed.tx) == [
            "init_trade",
            "from_balance",
            "swap_exact_input_direct",
            "value",
            "resolve_trade",
        ]
        transfers = [c for c in composed.tx.commands if isinstance(c, TransferObjects)]
        assert len(transfers) == 2

    def test_init_trade_arguments(self, make_account, pair, orchestrator):
        account = make_account()

        composed = orchestrator.compose(account, pair, EXECUTOR)
        init = composed.tx.move_calls()[0]

        assert init.type_arguments == [account.input_type, account.output_type]
        # dca, clock, registry, then one object per feed leg
        assert len(init.arguments) == 7
        shared = [i.object_id for i in composed.tx.inputs if hasattr(i, "object_id")]
        assert account.id in shared
        assert normalize_address("0x11") in shared

    def test_reward_and_output_recipients(self, make_account, pair, orchestrator):
        account = make_account()

        described = orchestrator.compose(account, pair, EXECUTOR).tx.describe()
        pures = [i["pure"] for i in described["inputs"] if "pure" in i]

        assert f"address:{account.owner}" in pures
        assert f"address:{EXECUTOR}" in pures
        assert "u64:25000000" in pures

    def test_over_claim_builds_nothing(self, make_account, pair, orchestrator):
        with pytest.raises(RewardClaimExceededError):
            orchestrator.compose(make_account(), pair, EXECUTOR, reward_claim=30_000_000)

    def test_swap_adapter_leg(self, make_account, pair, orchestrator):
        composed = orchestrator.compose(make_account(), pair, EXECUTOR)
        swap = composed.tx.move_calls()[2]

        assert swap.module == "router"
        assert swap.package == normalize_address("0xf10")

    def test_legacy_compose_without_prices(self, make_account):
        swap = FlowXSwapAdapter("0xf10", "0xc0")
        orchestrator = TradeOrchestrator(PACKAGE, FEE_TRACKER, REGISTRY, swap, use_legacy_init=True)
        account = make_account(trade_params=TradeParams(max_price=OraclePrice(1, 5)))

        composed = orchestrator.compose(account, None, EXECUTOR)

        assert _functions(composed.tx)[0] == "init_trade_legacy"
        assert composed.quote.min_output == 0
        assert check_price_bounds(account, composed.quote) is None
