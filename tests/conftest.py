"""
Shared fixtures for the keeper test-suite.
"""

import pytest

from dca_keeper.core.dca.models import (
    ConfigSnapshot,
    DCAAccount,
    OraclePrice,
    TimeScale,
    TradeParams,
)
from dca_keeper.sui.bcs import normalize_address, normalize_type


PACKAGE_ID = normalize_address("0xdca")
OWNER = normalize_address("0xa11ce")
EXECUTOR = normalize_address("0xb0b")
INPUT_TYPE = normalize_type("0x2::sui::SUI")
OUTPUT_TYPE = normalize_type("0xbeef::usdc::USDC")

DAY_MS = 86_400_000
HOUR_MS = 3_600_000


@pytest.fixture
def snapshot():
    """Config snapshot with a 0.3% fee and 0.025 SUI reward."""
    return ConfigSnapshot(
        fee_bps=30,
        executor_reward_per_trade=25_000_000,
        default_slippage_bps=100,
        treasury=normalize_address("0x7ea"),
        max_slippage_bps=500,
    )


@pytest.fixture
def make_account(snapshot):
    """Factory for DCA account snapshots; keyword overrides replace defaults."""

    def _make(**overrides):
        values = dict(
            id=normalize_address("0x1"),
            owner=OWNER,
            delegatee=OWNER,
            input_type=INPUT_TYPE,
            output_type=OUTPUT_TYPE,
            start_time_ms=0,
            last_time_ms=0,
            every=1,
            time_scale=TimeScale.DAYS,
            initial_orders=10,
            remaining_orders=10,
            input_balance=10_000_000_000,
            split_allocation=1_000_000_000,
            trade_params=TradeParams(),
            active=True,
            executor_reward_balance=250_000_000,
            config_snapshot=snapshot,
            input_decimals=9,
            output_decimals=6,
            version=1,
        )
        values.update(overrides)
        return DCAAccount(**values)

    return _make


@pytest.fixture
def bounded_params():
    """Trade params with a min and max price band."""
    return TradeParams(
        min_price=OraclePrice(base_val=1, quote_val=2),
        max_price=OraclePrice(base_val=1, quote_val=5),
        slippage_bps=200,
    )


@pytest.fixture
def account_object():
    """Factory for `sui_multiGetObjects` entries holding a DCA<SUI, USDC> object."""

    def _make(object_id="0x1", last_time_ms=0, active=True, remaining_orders=10, version=1, **fields):
        values = {
            "id": {"id": normalize_address(object_id)},
            "owner": OWNER,
            "delegatee": OWNER,
            "start_time_ms": "0",
            "last_time_ms": str(last_time_ms),
            "every": "1",
            "time_scale": 3,
            "initial_orders": "10",
            "remaining_orders": str(remaining_orders),
            "input_balance": "10000000000",
            "split_allocation": "1000000000",
            "trade_params": {
                "fields": {
                    "min_price": {"fields": {"vec": []}},
                    "max_price": {"fields": {"vec": [{"fields": {"base_val": "1", "quote_val": "5"}}]}},
                    "slippage_bps": None,
                }
            },
            "active": active,
            "executor_reward_balance": "250000000",
            "config_snapshot": {
                "fields": {
                    "fee_bps": "30",
                    "executor_reward_per_trade": "25000000",
                    "default_slippage_bps": "100",
                    "treasury": "0x7ea",
                    "max_slippage_bps": "500",
                }
            },
            "input_decimals": 9,
            "output_decimals": 6,
            "version": "1",
        }
        values.update(fields)
        return {
            "data": {
                "objectId": normalize_address(object_id),
                "version": str(version),
                "content": {
                    "dataType": "moveObject",
                    "type": f"{PACKAGE_ID}::dca::DCA<{INPUT_TYPE}, {OUTPUT_TYPE}>",
                    "fields": values,
                },
            }
        }

    return _make
