"""
DCA Keeper Core

Scanning, scheduling, pricing, composition and submission of DCA orders.
"""

from .models import (
    ConfigSnapshot,
    DCAAccount,
    DeactivationReason,
    DirectFeed,
    GlobalConfig,
    OrderOutcome,
    PriceObservation,
    RoutedFeed,
    SkipReason,
    TimeScale,
    TradeParams,
    TradeReceipt,
)
from .accounting import (
    effective_slippage_bps,
    estimate_gas_cost,
    expected_output_amount,
    fee_amount,
    min_output_amount,
    net_trade_amount,
    validate_reward_claim,
)
from .admin import AccountAdmin, AccountRequest
from .batch import build_batches
from .oracle import OracleResolver, PairPrice
from .orchestrator import TradeOrchestrator, TradePromise, TradeQuote, TradeScope
from .scanner import AccountScanner, ScanResult
from .scheduler import DCAScheduler
from .submitter import SubmissionResult, TradeSubmitter
from .swap import FlowXSwapAdapter, SwapAdapter

__all__ = [
    # Models
    "ConfigSnapshot",
    "DCAAccount",
    "DeactivationReason",
    "DirectFeed",
    "GlobalConfig",
    "OrderOutcome",
    "PriceObservation",
    "RoutedFeed",
    "SkipReason",
    "TimeScale",
    "TradeParams",
    "TradeReceipt",
    # Accounting
    "effective_slippage_bps",
    "estimate_gas_cost",
    "expected_output_amount",
    "fee_amount",
    "min_output_amount",
    "net_trade_amount",
    "validate_reward_claim",
    # Components
    "AccountAdmin",
    "AccountRequest",
    "AccountScanner",
    "DCAScheduler",
    "FlowXSwapAdapter",
    "OracleResolver",
    "PairPrice",
    "ScanResult",
    "SubmissionResult",
    "SwapAdapter",
    "TradeOrchestrator",
    "TradePromise",
    "TradeQuote",
    "TradeScope",
    "TradeSubmitter",
    "build_batches",
]
