"""
Error Recovery Module

Provides the keeper's error taxonomy, abort classification, retry logic and
quarantine bookkeeping.
"""

from .errors import (
    AlreadyResolvedError,
    ConfigError,
    EconomicInfeasibleError,
    ErrorCategory,
    ErrorContext,
    ExecutorWalletError,
    InsufficientFundsError,
    OnChainAssertionError,
    OracleStalenessError,
    RecoverableError,
    RewardClaimExceededError,
    RpcResponseError,
    RpcTransientError,
    SlippageExceededError,
    TimeNotElapsedError,
    TradeScopeError,
    UnrecoverableError,
    VersionMismatchError,
    as_keeper_error,
    classify_abort,
    classify_error,
)
from .strategies import (
    CircuitBreakerConfig,
    CircuitBreakerStrategy,
    CircuitState,
    QuarantineBook,
    RecoveryStrategy,
    RetryConfig,
    RetryStrategy,
)

__all__ = [
    # Errors
    "AlreadyResolvedError",
    "ConfigError",
    "EconomicInfeasibleError",
    "ErrorCategory",
    "ErrorContext",
    "ExecutorWalletError",
    "InsufficientFundsError",
    "OnChainAssertionError",
    "OracleStalenessError",
    "RecoverableError",
    "RewardClaimExceededError",
    "RpcResponseError",
    "RpcTransientError",
    "SlippageExceededError",
    "TimeNotElapsedError",
    "TradeScopeError",
    "UnrecoverableError",
    "VersionMismatchError",
    "as_keeper_error",
    "classify_abort",
    "classify_error",
    # Strategies
    "CircuitBreakerConfig",
    "CircuitBreakerStrategy",
    "CircuitState",
    "QuarantineBook",
    "RecoveryStrategy",
    "RetryConfig",
    "RetryStrategy",
]
