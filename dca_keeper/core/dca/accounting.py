"""
Reward & Fee Accountant

Integer arithmetic for sizing a trade from an account's config snapshot:
protocol fee, net input, expected and minimum output, and the executor's
reward claim. Every function reads only the snapshot passed in, never the
live global config.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal
from typing import Any, Dict, Optional

from ..recovery.errors import RewardClaimExceededError
from .models import BPS_DENOMINATOR, ConfigSnapshot, DCAAccount, OraclePrice, SkipReason


def fee_amount(gross: int, fee_bps: int) -> int:
    """Protocol fee, rounded down."""
    if gross < 0:
        raise ValueError("gross amount cannot be negative")
    if not 0 <= fee_bps <= BPS_DENOMINATOR:
        raise ValueError(f"fee_bps out of range: {fee_bps}")
    return gross * fee_bps // BPS_DENOMINATOR


def net_trade_amount(gross: int, fee_bps: int) -> int:
    """Input forwarded to the swap. `fee_amount + net_trade_amount == gross`."""
    return gross - fee_amount(gross, fee_bps)


def effective_slippage_bps(account: DCAAccount) -> int:
    return account.effective_slippage_bps


def expected_output_amount(
    net_input: int,
    input_usd: Decimal,
    output_usd: Decimal,
    input_decimals: int,
    output_decimals: int,
) -> int:
    """
    Oracle-implied output for `net_input` base units of the input coin.

    output = net × (price_in / price_out) × 10^(out_decimals − in_decimals), floored.
    """
    if output_usd <= 0 or input_usd <= 0:
        raise ValueError("prices must be positive")
    scaled = (Decimal(net_input) * input_usd / output_usd).scaleb(output_decimals - input_decimals)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def min_output_amount(expected_output: int, slippage_bps: int) -> int:
    """Lowest output the trade may settle for; strictly decreasing in slippage for positive outputs."""
    if not 0 <= slippage_bps <= BPS_DENOMINATOR:
        raise ValueError(f"slippage_bps out of range: {slippage_bps}")
    return expected_output * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def validate_reward_claim(
    claim: Optional[int],
    snapshot: ConfigSnapshot,
    dca_id: Optional[str] = None,
) -> int:
    """
    Return the reward to request for one trade.

    An unset claim requests exactly the snapshot reward. A claim above the
    snapshot is rejected, never capped.
    """
    if claim is None:
        return snapshot.executor_reward_per_trade
    if claim < 0:
        raise ValueError("reward claim cannot be negative")
    if claim > snapshot.executor_reward_per_trade:
        raise RewardClaimExceededError(
            f"Reward claim {claim} exceeds snapshot reward {snapshot.executor_reward_per_trade}",
            dca_id=dca_id,
        )
    return claim


def estimate_gas_cost(gas_used: Dict[str, Any]) -> int:
    """Net MIST cost from a `gasUsed` effects summary."""
    computation = int(gas_used.get("computationCost", 0))
    storage = int(gas_used.get("storageCost", 0))
    rebate = int(gas_used.get("storageRebate", 0))
    return max(0, computation + storage - rebate)


def price_bound_violation(
    net_input: int,
    expected_output: int,
    min_price: Optional[OraclePrice],
    max_price: Optional[OraclePrice],
) -> Optional[SkipReason]:
    """
    Compare the trade's implied rate with the account's price bounds.

    A bound `(base_val, quote_val)` reads "base_val input units buy quote_val
    output units". The trade buys `expected_output` for `net_input`, so it is
    above the max price when it would get fewer output units per input than
    the max allows, and below the min price when it gets more than the min
    allows.
    """
    if net_input <= 0:
        return None
    if max_price is not None and max_price.base_val > 0:
        if expected_output * max_price.base_val < net_input * max_price.quote_val:
            return SkipReason.PRICE_ABOVE_MAX
    if min_price is not None and min_price.base_val > 0:
        if expected_output * min_price.base_val > net_input * min_price.quote_val:
            return SkipReason.PRICE_BELOW_MIN
    return None
