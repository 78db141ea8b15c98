"""
Tests for account lifecycle transaction builders.
"""

import pytest

from dca_keeper.core.dca.admin import AccountAdmin, AccountRequest, validate_account_request
from dca_keeper.core.dca.models import GlobalConfig, TimeScale
from dca_keeper.sui.bcs import base58_encode, normalize_address
from dca_keeper.sui.transactions import MergeCoins, MoveCall, ObjectRef, SplitCoins


USDC_TYPE = "0xbeef::usdc::USDC"


@pytest.fixture
def global_config():
    return GlobalConfig(
        fee_bps=30,
        executor_reward_per_trade=25_000_000,
        max_orders_per_account=100,
        min_funding_per_trade=1_000,
        default_slippage_bps=100,
        max_slippage_bps=500,
        min_interval_seconds=60,
        treasury="0x7ea",
    )


@pytest.fixture
def admin():
    return AccountAdmin("0xdca", "0xc0f", terms_registry_id="0x7e5")


def _request(**overrides):
    values = dict(
        input_type="0x2::sui::SUI",
        output_type=USDC_TYPE,
        total_amount=10_000_000_000,
        total_orders=10,
        every=1,
        time_scale=TimeScale.DAYS,
        input_decimals=9,
        output_decimals=6,
        accepted_terms_version=1,
    )
    values.update(overrides)
    return AccountRequest(**values)


def _coin(object_id):
    return ObjectRef(object_id, 3, base58_encode(bytes([1]) * 32))


# =============================================================================
# Creation Tests
# =============================================================================

class TestAccountCreation:
    """Tests for init_account and request validation."""

    def test_valid_request(self, global_config):
        assert validate_account_request(_request(), global_config) == []

    def test_problems_collected(self, global_config):
        request = _request(total_orders=1_000, every=30, time_scale=TimeScale.SECONDS)
        problems = validate_account_request(request, global_config)

        assert any("total_orders" in p for p in problems)
        assert any("interval" in p for p in problems)

    def test_paused_protocol(self, global_config):
        paused = GlobalConfig(**{**global_config.__dict__, "paused": True})
        assert "protocol is paused" in validate_account_request(_request(), paused)

    def test_sui_input_split_from_gas(self, admin, global_config):
        tx = admin.init_account(_request(), global_config)

        splits = [c for c in tx.commands if isinstance(c, SplitCoins)]
        assert len(splits) == 2
        described = tx.describe()["inputs"]
        # reward escrow: 25,000,000 x 10 orders
        assert {"pure": "u64:250000000"} in described
        assert {"pure": "u64:10000000000"} in described
        call = tx.move_calls()[-1]
        assert call.function == "init_account"
        assert call.type_arguments == ["0x2::sui::SUI", USDC_TYPE]

    def test_token_input_merges_coins(self, admin, global_config):
        request = _request(input_type=USDC_TYPE, output_type="0x2::sui::SUI", total_amount=5_000_000)
        tx = admin.init_account(request, global_config, input_coins=[_coin("0x31"), _coin("0x32")])

        assert any(isinstance(c, MergeCoins) for c in tx.commands)

    def test_token_input_requires_coins(self, admin, global_config):
        request = _request(input_type=USDC_TYPE, output_type="0x2::sui::SUI")
        with pytest.raises(ValueError):
            admin.init_account(request, global_config)

    def test_terms_registry_required(self, global_config):
        with pytest.raises(ValueError):
            AccountAdmin("0xdca", "0xc0f").init_account(_request(), global_config)


# =============================================================================
# Owner Action Tests
# =============================================================================

class TestOwnerActions:
    """Tests for owner-side builders."""

    def test_version_upgrade(self, admin, make_account):
        account = make_account()
        tx = admin.check_version_and_upgrade(account)

        call = tx.move_calls()[0]
        assert call.function == "check_version_and_upgrade"
        assert call.package == normalize_address("0xdca")

    def test_set_slippage_within_limit(self, admin, make_account):
        tx = admin.set_slippage(make_account(), 150)
        assert tx.move_calls()[0].function == "set_slippage"

    @pytest.mark.parametrize("bps", [0, 501])
    def test_set_slippage_out_of_range(self, admin, make_account, bps):
        with pytest.raises(ValueError):
            admin.set_slippage(make_account(), bps)

    def test_withdraw_validation(self, admin, make_account):
        account = make_account(input_balance=100, remaining_orders=2)

        with pytest.raises(ValueError):
            admin.withdraw_input(account, 101)
        with pytest.raises(ValueError):
            admin.withdraw_input(account, 50, decrease_orders=3)

        tx = admin.withdraw_input(account, 50, decrease_orders=1)
        assert tx.move_calls()[0].function == "withdraw_input"

    @pytest.mark.parametrize(
        "method",
        ["reset_slippage", "set_inactive", "reactivate_as_owner", "redeem_funds_and_deactivate"],
    )
    def test_simple_actions(self, admin, make_account, method):
        tx = getattr(admin, method)(make_account())
        calls = [c for c in tx.commands if isinstance(c, MoveCall)]

        assert [c.function for c in calls] == [method]

    def test_add_reward(self, admin, make_account):
        tx = admin.add_executor_reward(make_account(), 50_000_000)

        assert isinstance(tx.commands[0], SplitCoins)
        assert tx.move_calls()[0].function == "add_executor_reward"

    def test_set_delegatee(self, admin, make_account):
        tx = admin.set_delegatee(make_account(), "0xd1e")
        assert {"pure": f"address:{normalize_address('0xd1e')}"} in tx.describe()["inputs"]
