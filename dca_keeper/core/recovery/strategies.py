"""
Recovery Strategies

Backoff for transient RPC failures, a circuit breaker in front of the RPC
endpoint, and a quarantine book for accounts that keep failing.
"""

import asyncio
import logging
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, List, Optional, TypeVar

from .errors import ErrorCategory, RecoverableError, RpcTransientError, UnrecoverableError, classify_error

T = TypeVar("T")

Operation = Callable[[], Coroutine[Any, Any, T]]
Sleep = Callable[[float], Coroutine[Any, Any, None]]


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class RetryConfig:
    """Exponential backoff: initial * base**attempt, capped, with optional jitter."""

    max_attempts: int = 3
    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.1

    def get_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt + 1` (attempt is zero-based)."""
        delay = min(self.initial_delay_seconds * self.exponential_base ** attempt, self.max_delay_seconds)
        if self.jitter:
            spread = delay * self.jitter_factor
            delay += random.uniform(-spread, spread)
        return max(delay, 0.0)


class RecoveryStrategy(ABC):
    """Wraps an async operation with a failure policy."""

    @abstractmethod
    async def execute(self, operation: Operation, context: Optional[Dict[str, Any]] = None) -> T:
        ...

    @abstractmethod
    def should_retry(self, error: Exception, attempt: int) -> bool:
        ...


class RetryStrategy(RecoveryStrategy):
    """
    Retries read-only RPC work (event pages, object fetches).

    Only recoverable errors are retried; Move aborts and configuration
    problems surface on the first attempt. A server-supplied retry_after
    wins over the computed backoff.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config or RetryConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep

    async def execute(self, operation: Operation, context: Optional[Dict[str, Any]] = None) -> T:
        label = (context or {}).get("operation", "rpc call")
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                if not self.should_retry(e, attempt):
                    raise
                delay = self.delay_for(e, attempt)
                attempt += 1
                self.logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    label, attempt, self.config.max_attempts, e, delay,
                )
                await self._sleep(delay)

    def should_retry(self, error: Exception, attempt: int) -> bool:
        if attempt + 1 >= self.config.max_attempts:
            return False
        if isinstance(error, (RecoverableError, UnrecoverableError)):
            return isinstance(error, RecoverableError)
        return classify_error(error).recoverable

    def delay_for(self, error: Exception, attempt: int) -> float:
        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            return min(retry_after, self.config.max_delay_seconds)
        return self.config.get_delay(attempt)


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5      # consecutive systemic failures before opening
    timeout_seconds: float = 30.0   # cool-down before a probe call is allowed
    probe_calls: int = 1            # concurrent calls allowed while half-open


class CircuitBreakerStrategy(RecoveryStrategy):
    """
    Circuit breaker in front of the Sui RPC endpoint.

    Only systemic failures (unreachable node, timeouts, rate limits) count
    toward opening it. A Move abort or a JSON-RPC error response proves the
    node answered, so it counts as a success for the breaker. While open,
    calls fail fast with RpcTransientError carrying the remaining cool-down
    as retry_after, which the keeper loop turns into its pause.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._probes = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    async def execute(self, operation: Operation, context: Optional[Dict[str, Any]] = None) -> T:
        self._admit()
        try:
            result = await operation()
        except Exception as e:
            if classify_error(e).systemic:
                self._on_failure()
            else:
                self._on_success()
            raise
        self._on_success()
        return result

    def should_retry(self, error: Exception, attempt: int) -> bool:
        return False

    def time_until_recovery(self) -> float:
        if self._opened_at is None:
            return 0
        return max(0, self.config.timeout_seconds - (self._clock() - self._opened_at))

    def trip(self) -> None:
        """Open the breaker now, e.g. after an out-of-band health failure."""
        self._set_state(CircuitState.OPEN)
        self._opened_at = self._clock()

    def reset(self) -> None:
        self._failures = 0
        self._opened_at = None
        self._set_state(CircuitState.CLOSED)

    def _admit(self) -> None:
        if self._state == CircuitState.OPEN:
            if self.time_until_recovery() > 0:
                raise RpcTransientError(
                    f"Circuit breaker '{self.name}' is open",
                    retry_after=self.time_until_recovery(),
                )
            self._probes = 0
            self._set_state(CircuitState.HALF_OPEN)
        if self._state == CircuitState.HALF_OPEN:
            if self._probes >= self.config.probe_calls:
                raise RpcTransientError(f"Circuit breaker '{self.name}' is probing; call rejected")
            self._probes += 1

    def _on_success(self) -> None:
        self._failures = 0
        if self._state == CircuitState.HALF_OPEN:
            self.reset()

    def _on_failure(self) -> None:
        self._failures += 1
        if self._state == CircuitState.HALF_OPEN or self._failures >= self.config.failure_threshold:
            self.trip()

    def _set_state(self, state: CircuitState) -> None:
        if state == self._state:
            return
        previous, self._state = self._state, state
        log = self.logger.warning if state == CircuitState.OPEN else self.logger.info
        log("Circuit breaker '%s' %s -> %s (failures=%d)", self.name, previous.value, state.value, self._failures)


@dataclass
class QuarantineEntry:
    failures: int = 0
    release_cycle: Optional[int] = None
    last_error: Optional[str] = None
    last_category: Optional[ErrorCategory] = None


class QuarantineBook:
    """
    Tracks terminal failures per account.

    After `failure_threshold` consecutive terminal failures an account is
    excluded from the next `quarantine_cycles` scan cycles. A success
    clears its record.
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        quarantine_cycles: int = 10,
        logger: Optional[logging.Logger] = None,
    ):
        self.failure_threshold = failure_threshold
        self.quarantine_cycles = quarantine_cycles
        self.logger = logger or logging.getLogger(__name__)
        self._entries: Dict[str, QuarantineEntry] = {}

    def record_failure(
        self,
        dca_id: str,
        cycle: int,
        error: Optional[str] = None,
        category: Optional[ErrorCategory] = None,
    ) -> bool:
        """Record a terminal failure. Returns True when this failure quarantines the account."""
        entry = self._entries.setdefault(dca_id, QuarantineEntry())
        entry.failures += 1
        entry.last_error = error
        entry.last_category = category
        if entry.failures >= self.failure_threshold and entry.release_cycle is None:
            entry.release_cycle = cycle + self.quarantine_cycles + 1
            self.logger.warning(
                "Quarantined %s for %d cycles after %d failures (last: %s)",
                dca_id, self.quarantine_cycles, entry.failures, category.value if category else "unknown",
            )
            return True
        return False

    def quarantine_now(
        self,
        dca_id: str,
        cycle: int,
        reason: str,
        category: Optional[ErrorCategory] = None,
    ) -> None:
        entry = self._entries.setdefault(dca_id, QuarantineEntry())
        entry.failures = max(entry.failures, self.failure_threshold)
        entry.last_error = reason
        if category is not None:
            entry.last_category = category
        entry.release_cycle = cycle + self.quarantine_cycles + 1

    def record_success(self, dca_id: str) -> None:
        self._entries.pop(dca_id, None)

    def is_quarantined(self, dca_id: str, cycle: int) -> bool:
        entry = self._entries.get(dca_id)
        if not entry or entry.release_cycle is None:
            return False
        if cycle >= entry.release_cycle:
            # Released: one more terminal failure re-quarantines it.
            entry.release_cycle = None
            entry.failures = self.failure_threshold - 1
            return False
        return True

    def quarantined(self, cycle: int) -> List[str]:
        return [
            dca_id
            for dca_id, entry in self._entries.items()
            if entry.release_cycle is not None and cycle < entry.release_cycle
        ]

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {
            dca_id: {
                "failures": entry.failures,
                "release_cycle": entry.release_cycle,
                "last_error": entry.last_error,
                "last_category": entry.last_category.value if entry.last_category else None,
            }
            for dca_id, entry in self._entries.items()
        }
