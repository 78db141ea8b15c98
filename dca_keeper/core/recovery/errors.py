"""
Error Classification

Defines the keeper's error taxonomy.
Errors are classified as recoverable (may be retried with backoff) or
unrecoverable (not retried within the current attempt). On-chain aborts are
further split by what the keeper should do about them.
"""

import asyncio
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type

import httpx


class ErrorCategory(str, Enum):
    """Categories of errors for recovery decisions."""

    CONFIG = "config"                       # Invalid startup configuration
    NETWORK = "network"                     # Network/connectivity issues
    RATE_LIMIT = "rate_limit"               # RPC rate limits
    TIMEOUT = "timeout"                     # Operation timed out
    TIME_NOT_ELAPSED = "time_not_elapsed"   # Order was not due on-chain
    ALREADY_RESOLVED = "already_resolved"   # Another keeper won the race
    SLIPPAGE = "slippage"                   # Output below the promise minimum
    INSUFFICIENT_FUNDS = "insufficient_funds"  # Account cannot fund a trade
    VERSION_MISMATCH = "version_mismatch"   # Account needs a version upgrade
    REWARD_CLAIM = "reward_claim"           # Reward request above snapshot
    ORACLE_STALE = "oracle_stale"           # Price too old or inconsistent
    ECONOMIC = "economic"                   # Reward does not cover gas
    EXECUTOR_WALLET = "executor_wallet"     # Keeper's own gas wallet problem
    CONTRACT = "contract"                   # Other Move abort
    COMPOSITION = "composition"             # Transaction could not be composed
    UNKNOWN = "unknown"                     # Unclassified error


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    benign: bool = False
    systemic: bool = False
    retry_after_seconds: Optional[float] = None
    suggested_action: Optional[str] = None
    dca_id: Optional[str] = None
    digest: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class RecoverableError(Exception):
    """
    Base class for errors that can be retried.

    These errors are typically transient:
    - Network issues
    - Rate limits
    - Timeouts
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        retry_after: Optional[float] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.retry_after = retry_after
        self.context = context or ErrorContext(category=category, recoverable=True)


class UnrecoverableError(Exception):
    """
    Base class for errors that are not retried within the current attempt.

    Depending on the context flags the keeper skips the order for this
    cycle, treats the outcome as benign, or stops the process.
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.context = context or ErrorContext(category=category, recoverable=False)


# Startup errors
class ConfigError(UnrecoverableError):
    """Invalid startup configuration. Fatal."""

    def __init__(self, message: str = "Invalid configuration", problems: Optional[List[str]] = None):
        self.problems = list(problems or [])
        super().__init__(
            message,
            category=ErrorCategory.CONFIG,
            context=ErrorContext(
                category=ErrorCategory.CONFIG,
                recoverable=False,
                systemic=True,
                suggested_action="Fix the environment and restart",
                details={"problems": self.problems},
            ),
        )


# Transport errors
class RpcTransientError(RecoverableError):
    """Network, timeout or rate-limit failure talking to the RPC endpoint."""

    def __init__(
        self,
        message: str = "RPC request failed",
        method: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.NETWORK,
        retry_after: Optional[float] = None,
    ):
        self.method = method
        super().__init__(
            message,
            category=category,
            retry_after=retry_after,
            context=ErrorContext(
                category=category,
                recoverable=True,
                systemic=True,
                retry_after_seconds=retry_after,
                suggested_action="Retry with exponential backoff",
                details={"method": method} if method else {},
            ),
        )


class RpcResponseError(UnrecoverableError):
    """The RPC endpoint answered with a JSON-RPC error object."""

    def __init__(self, message: str, code: Optional[int] = None, method: Optional[str] = None):
        self.code = code
        self.method = method
        super().__init__(
            message,
            category=ErrorCategory.CONTRACT,
            context=ErrorContext(
                category=ErrorCategory.CONTRACT,
                recoverable=False,
                details={"code": code, "method": method},
            ),
        )


# On-chain assertion errors
class OnChainAssertionError(UnrecoverableError):
    """A Move abort raised by the protocol while executing a trade."""

    category_default = ErrorCategory.CONTRACT
    benign = False
    recoverable = False
    suggested_action = "Review transaction parameters"

    def __init__(
        self,
        message: str = "On-chain assertion failed",
        dca_id: Optional[str] = None,
        digest: Optional[str] = None,
        abort_code: Optional[int] = None,
        function_name: Optional[str] = None,
    ):
        self.dca_id = dca_id
        self.digest = digest
        self.abort_code = abort_code
        self.function_name = function_name
        super().__init__(
            message,
            category=self.category_default,
            context=ErrorContext(
                category=self.category_default,
                recoverable=self.recoverable,
                benign=self.benign,
                suggested_action=self.suggested_action,
                dca_id=dca_id,
                digest=digest,
                details={"abort_code": abort_code, "function": function_name},
            ),
        )


class TimeNotElapsedError(OnChainAssertionError):
    """The order was not actually due; re-evaluate next cycle."""

    category_default = ErrorCategory.TIME_NOT_ELAPSED
    benign = True
    suggested_action = "Re-evaluate next cycle"


class AlreadyResolvedError(OnChainAssertionError):
    """Another keeper settled the order first."""

    category_default = ErrorCategory.ALREADY_RESOLVED
    benign = True
    suggested_action = "Nothing to do"


class SlippageExceededError(OnChainAssertionError):
    """Swap output fell below the promise's minimum."""

    category_default = ErrorCategory.SLIPPAGE
    recoverable = True
    suggested_action = "Refresh oracle prices and retry once"


class InsufficientFundsError(OnChainAssertionError):
    """Account balance or reward escrow cannot cover the trade."""

    category_default = ErrorCategory.INSUFFICIENT_FUNDS
    suggested_action = "Mark as deactivation candidate"


class VersionMismatchError(OnChainAssertionError):
    """Account was created by an older package version."""

    category_default = ErrorCategory.VERSION_MISMATCH
    recoverable = True
    suggested_action = "Run check_version_and_upgrade, then retry"


class RewardClaimExceededError(OnChainAssertionError):
    """Requested executor reward is above the account's snapshot."""

    category_default = ErrorCategory.REWARD_CLAIM
    suggested_action = "Lower EXECUTOR_REWARD_CLAIM"


# Pre-trade errors
class OracleStalenessError(UnrecoverableError):
    """Oracle observation too old, skewed or unusable."""

    def __init__(
        self,
        message: str = "Oracle price is stale",
        feed_id: Optional[str] = None,
        age_seconds: Optional[int] = None,
    ):
        self.feed_id = feed_id
        self.age_seconds = age_seconds
        super().__init__(
            message,
            category=ErrorCategory.ORACLE_STALE,
            context=ErrorContext(
                category=ErrorCategory.ORACLE_STALE,
                recoverable=False,
                suggested_action="Skip order this cycle",
                details={"feed_id": feed_id, "age_seconds": age_seconds},
            ),
        )


class EconomicInfeasibleError(UnrecoverableError):
    """Expected reward does not cover the estimated transaction cost."""

    def __init__(
        self,
        message: str = "Trade is not economically feasible",
        reward: Optional[int] = None,
        gas_cost: Optional[int] = None,
    ):
        self.reward = reward
        self.gas_cost = gas_cost
        super().__init__(
            message,
            category=ErrorCategory.ECONOMIC,
            context=ErrorContext(
                category=ErrorCategory.ECONOMIC,
                recoverable=False,
                suggested_action="Skip order this cycle",
                details={"reward": reward, "gas_cost": gas_cost},
            ),
        )


class ExecutorWalletError(UnrecoverableError):
    """Keeper wallet cannot pay for gas."""

    def __init__(self, message: str = "Executor wallet cannot pay gas", address: Optional[str] = None):
        self.address = address
        super().__init__(
            message,
            category=ErrorCategory.EXECUTOR_WALLET,
            context=ErrorContext(
                category=ErrorCategory.EXECUTOR_WALLET,
                recoverable=False,
                systemic=True,
                suggested_action="Top up the executor wallet with SUI",
                details={"address": address},
            ),
        )


class TradeScopeError(UnrecoverableError):
    """A trade transaction was composed incorrectly and has been discarded."""

    def __init__(self, message: str = "Trade scope misuse", dca_id: Optional[str] = None):
        self.dca_id = dca_id
        super().__init__(
            message,
            category=ErrorCategory.COMPOSITION,
            context=ErrorContext(
                category=ErrorCategory.COMPOSITION,
                recoverable=False,
                dca_id=dca_id,
            ),
        )


# Abort classification
_MOVE_ABORT_RE = re.compile(
    r"MoveAbort\(.*?name:\s*Identifier\(\"(?P<module>\w+)\"\).*?"
    r"function_name:\s*Some\(\"(?P<function>\w+)\"\).*?\},\s*(?P<code>\d+)\)",
    re.DOTALL,
)

_ABORT_PATTERNS: List[Tuple[Tuple[str, ...], Type[OnChainAssertionError]]] = [
    (("ENotEnoughTimePassed", "assert_time"), TimeNotElapsedError),
    (("ENoRemainingOrders", "EInactive", "assert_active", "EAlreadyResolved"), AlreadyResolvedError),
    (("EExecutorRewardTooHigh", "EInvalidExecutorReward", "ERewardExceedsSnapshot"), RewardClaimExceededError),
    (
        ("EUnfundedAccount", "EInsufficientFunds", "EInsufficientExecutorReward", "EInsufficientBalance"),
        InsufficientFundsError,
    ),
    (("ESlippageExceeded", "EMinOutputNotMet", "EOutputBelowMinimum", "EInsufficientOutput"), SlippageExceededError),
    (("EWrongVersion", "EVersionMismatch", "ENotUpgrade", "check_version"), VersionMismatchError),
]

_STALE_ORACLE_PATTERNS = ("EStalePrice", "EPriceTooOld", "E_STALE_PRICE_UPDATE", "stale_price")
_GAS_WALLET_PATTERNS = ("InsufficientGas", "GasBalanceTooLow", "InsufficientCoinBalance", "No valid gas coins")


def parse_move_abort(message: str) -> Tuple[Optional[str], Optional[str], Optional[int]]:
    """Extract (module, function, abort code) from a MoveAbort status string."""
    match = _MOVE_ABORT_RE.search(message)
    if not match:
        return None, None, None
    return match.group("module"), match.group("function"), int(match.group("code"))


def classify_abort(
    message: str,
    dca_id: Optional[str] = None,
    digest: Optional[str] = None,
) -> Exception:
    """
    Map a failed transaction status or RPC rejection to the taxonomy.

    Returns an exception instance; callers decide whether to raise it.
    """
    _, function_name, code = parse_move_abort(message)

    for patterns, error_cls in _ABORT_PATTERNS:
        if any(p in message for p in patterns):
            return error_cls(message, dca_id=dca_id, digest=digest, abort_code=code, function_name=function_name)

    if any(p.lower() in message.lower() for p in _STALE_ORACLE_PATTERNS):
        return OracleStalenessError(message)

    if any(p in message for p in _GAS_WALLET_PATTERNS):
        return ExecutorWalletError(message)

    return OnChainAssertionError(message, dca_id=dca_id, digest=digest, abort_code=code, function_name=function_name)


def classify_error(error: BaseException) -> ErrorContext:
    """
    Classify an exception and return its error context.

    This function attempts to classify generic exceptions based on
    their message and type.
    """
    if isinstance(error, (RecoverableError, UnrecoverableError)):
        return error.context

    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
        return ErrorContext(
            category=ErrorCategory.TIMEOUT,
            recoverable=True,
            systemic=True,
            retry_after_seconds=10.0,
            suggested_action="Retry with longer timeout",
        )

    if isinstance(error, httpx.TransportError):
        return ErrorContext(
            category=ErrorCategory.NETWORK,
            recoverable=True,
            systemic=True,
            retry_after_seconds=5.0,
            suggested_action="Check RPC connectivity",
        )

    message = str(error).lower()

    rate_limit_patterns = ["rate limit", "too many requests", "429", "throttl"]
    if any(p in message for p in rate_limit_patterns):
        return ErrorContext(
            category=ErrorCategory.RATE_LIMIT,
            recoverable=True,
            systemic=True,
            retry_after_seconds=60.0,
            suggested_action="Wait before retrying",
        )

    network_patterns = ["connection", "network", "unreachable", "refused", "dns", "socket"]
    if any(p in message for p in network_patterns):
        return ErrorContext(
            category=ErrorCategory.NETWORK,
            recoverable=True,
            systemic=True,
            retry_after_seconds=5.0,
            suggested_action="Check RPC connectivity",
        )

    timeout_patterns = ["timeout", "timed out", "deadline"]
    if any(p in message for p in timeout_patterns):
        return ErrorContext(
            category=ErrorCategory.TIMEOUT,
            recoverable=True,
            systemic=True,
            retry_after_seconds=10.0,
            suggested_action="Retry with longer timeout",
        )

    if "moveabort" in message:
        return classify_error(classify_abort(str(error)))

    return ErrorContext(
        category=ErrorCategory.UNKNOWN,
        recoverable=False,
        suggested_action="Inspect logs",
    )


def as_keeper_error(error: BaseException, method: Optional[str] = None) -> Exception:
    """Wrap transport-level exceptions in RpcTransientError; pass taxonomy errors through."""
    if isinstance(error, (RecoverableError, UnrecoverableError)):
        return error
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
        return RpcTransientError(f"Timed out: {error!r}", method=method, category=ErrorCategory.TIMEOUT)
    if isinstance(error, httpx.TransportError):
        return RpcTransientError(f"Transport error: {error}", method=method)
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 429:
            return RpcTransientError("Rate limited by RPC endpoint", method=method,
                                     category=ErrorCategory.RATE_LIMIT, retry_after=60.0)
        if status >= 500:
            return RpcTransientError(f"RPC endpoint returned {status}", method=method)
    return error if isinstance(error, Exception) else RuntimeError(str(error))
