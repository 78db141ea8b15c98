"""
Trade Submitter

Takes one due account from fresh eligibility check to a reconciled outcome:
re-read the account, price it, compose the trade, sign, preflight, submit
and confirm settlement from the emitted events. Failures are classified and
routed to the matching policy (benign no-op, single retry, backoff, skip,
quarantine).
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set

import structlog

from ...providers.sui_rpc import SuiRpcClient
from ...sui.bcs import normalize_address
from ...sui.keypair import SuiKeypair
from ...sui.transactions import GasConfig, ObjectRef, ProgrammableTransaction
from ..recovery.errors import (
    AlreadyResolvedError,
    EconomicInfeasibleError,
    ErrorCategory,
    ExecutorWalletError,
    InsufficientFundsError,
    OnChainAssertionError,
    OracleStalenessError,
    RewardClaimExceededError,
    RpcResponseError,
    RpcTransientError,
    SlippageExceededError,
    TimeNotElapsedError,
    TradeScopeError,
    VersionMismatchError,
    classify_abort,
)
from ..recovery.strategies import QuarantineBook, RetryConfig
from .accounting import estimate_gas_cost
from .admin import AccountAdmin
from .models import DCAAccount, OrderOutcome, SkipReason, TradeReceipt, parse_protocol_events
from .oracle import OracleResolver
from .orchestrator import TradeOrchestrator, check_price_bounds
from .scanner import AccountScanner
from .scheduler import DCAScheduler

logger = logging.getLogger(__name__)
_slog = structlog.stdlib.get_logger("dca.submitter")


@dataclass
class SubmissionResult:
    """Outcome of one order in one cycle."""
    dca_id: str
    outcome: OrderOutcome
    digest: Optional[str] = None
    receipt: Optional[TradeReceipt] = None
    skip_reason: Optional[SkipReason] = None
    category: Optional[ErrorCategory] = None
    error: Optional[str] = None
    attempts: int = 0
    quarantined: bool = False
    systemic: bool = False

    @property
    def success(self) -> bool:
        return self.outcome in (OrderOutcome.SETTLED, OrderOutcome.DRY_RUN)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dcaId": self.dca_id,
            "outcome": self.outcome.value,
            "digest": self.digest,
            "skipReason": self.skip_reason.value if self.skip_reason else None,
            "category": self.category.value if self.category else None,
            "error": self.error,
            "attempts": self.attempts,
            "quarantined": self.quarantined,
            "receipt": self.receipt.to_dict() if self.receipt else None,
        }


class TradeSubmitter:
    """
    Executes due orders, one transaction per order.

    Responsibilities:
    1. Re-verify the account is still due
    2. Resolve oracle prices and compose the trade
    3. Preflight (dry run) for aborts and gas cost
    4. Sign and submit, then reconcile from events
    5. Retry, skip or quarantine according to the failure class
    """

    def __init__(
        self,
        client: SuiRpcClient,
        scanner: AccountScanner,
        oracle: OracleResolver,
        orchestrator: TradeOrchestrator,
        admin: AccountAdmin,
        quarantine: QuarantineBook,
        keypair: Optional[SuiKeypair] = None,
        retry_config: Optional[RetryConfig] = None,
        gas_budget: int = 50_000_000,
        reward_claim: Optional[int] = None,
        dry_run: bool = False,
        preflight: bool = True,
        submit_timeout: float = 30.0,
        alerter: Optional[Any] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Coroutine[Any, Any, None]] = asyncio.sleep,
    ):
        self.client = client
        self.scanner = scanner
        self.oracle = oracle
        self.orchestrator = orchestrator
        self.admin = admin
        self.quarantine = quarantine
        self.keypair = keypair
        self.retry_config = retry_config or RetryConfig()
        self.gas_budget = gas_budget
        self.reward_claim = reward_claim
        self.dry_run = dry_run
        self.preflight = preflight
        self.submit_timeout = submit_timeout
        self.alerter = alerter
        self._clock = clock
        self._sleep = sleep
        self._locks: Dict[str, asyncio.Lock] = {}
        self.deactivation_candidates: Set[str] = set()

    @property
    def executor_address(self) -> Optional[str]:
        return self.keypair.address if self.keypair else None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ---------------------------
    # Entry point
    # ---------------------------
    async def execute_order(self, account: DCAAccount, cycle: int) -> SubmissionResult:
        """Run one order; never raises for per-account failures."""
        if self.quarantine.is_quarantined(account.id, cycle):
            return SubmissionResult(account.id, OrderOutcome.SKIPPED, skip_reason=SkipReason.QUARANTINED)

        lock = self._locks.setdefault(account.id, asyncio.Lock())
        if lock.locked():
            return SubmissionResult(account.id, OrderOutcome.SKIPPED, skip_reason=SkipReason.BUSY)

        try:
            async with lock:
                return await asyncio.wait_for(self._execute(account, cycle), timeout=self.submit_timeout)
        except asyncio.TimeoutError:
            return await self._fail(
                account.id,
                cycle,
                RpcTransientError(
                    f"Submission timed out after {self.submit_timeout}s",
                    category=ErrorCategory.TIMEOUT,
                ),
                attempts=0,
            )
        except ExecutorWalletError:
            # Keeper-wide: no order can pay gas, so the cycle itself must stop.
            raise
        except Exception as e:
            logger.error("Unexpected failure executing %s: %s", account.id, e, exc_info=True)
            return await self._fail(account.id, cycle, e, attempts=0)
        finally:
            # Concurrent callers are turned away as BUSY, never queued on the lock.
            self._locks.pop(account.id, None)

    async def _execute(self, account: DCAAccount, cycle: int) -> SubmissionResult:
        try:
            fresh = await self.scanner.refresh(account.id)
        except RpcTransientError as e:
            return await self._fail(account.id, cycle, e, attempts=0)
        if fresh is None:
            return SubmissionResult(account.id, OrderOutcome.ALREADY_RESOLVED, skip_reason=SkipReason.INACTIVE)
        reason = DCAScheduler.why_not_due(fresh, self._now_ms())
        if reason is not None:
            _slog.info("trade_not_due", dca_id=account.id, reason=reason.value)
            outcome = OrderOutcome.NOT_DUE if reason == SkipReason.NOT_YET_DUE else OrderOutcome.SKIPPED
            return SubmissionResult(account.id, outcome, skip_reason=reason)

        attempts = 0
        slippage_retried = False
        upgraded = False
        while True:
            attempts += 1
            try:
                return await self._attempt(fresh, attempts)

            except (TimeNotElapsedError, AlreadyResolvedError) as e:
                outcome = (
                    OrderOutcome.NOT_DUE if isinstance(e, TimeNotElapsedError) else OrderOutcome.ALREADY_RESOLVED
                )
                _slog.info("trade_race_lost", dca_id=fresh.id, category=e.category.value, digest=e.digest)
                return SubmissionResult(fresh.id, outcome, digest=e.digest, category=e.category, attempts=attempts)

            except SlippageExceededError as e:
                if not slippage_retried:
                    slippage_retried = True
                    logger.info("Slippage exceeded for %s; refreshing prices and retrying once", fresh.id)
                    continue
                return await self._fail(fresh.id, cycle, e, attempts)

            except VersionMismatchError as e:
                if not upgraded:
                    upgraded = True
                    logger.info("Account %s needs a version upgrade", fresh.id)
                    try:
                        await self._send(self.admin.check_version_and_upgrade(fresh), fresh.id)
                    except (OnChainAssertionError, RpcResponseError, RpcTransientError) as upgrade_error:
                        return await self._fail(fresh.id, cycle, upgrade_error, attempts)
                    continue
                return await self._fail(fresh.id, cycle, e, attempts)

            except InsufficientFundsError as e:
                self.deactivation_candidates.add(fresh.id)
                self.quarantine.quarantine_now(fresh.id, cycle, str(e))
                _slog.warning("trade_failed", dca_id=fresh.id, category=e.category.value, digest=e.digest)
                return SubmissionResult(
                    fresh.id,
                    OrderOutcome.FAILED,
                    digest=e.digest,
                    category=e.category,
                    error=str(e),
                    attempts=attempts,
                    quarantined=True,
                )

            except OracleStalenessError as e:
                _slog.info("trade_skipped", dca_id=fresh.id, reason=SkipReason.ORACLE_STALE.value, error=str(e))
                return SubmissionResult(
                    fresh.id, OrderOutcome.SKIPPED, skip_reason=SkipReason.ORACLE_STALE,
                    category=e.category, error=str(e), attempts=attempts,
                )

            except EconomicInfeasibleError as e:
                _slog.info("trade_skipped", dca_id=fresh.id, reason=SkipReason.UNECONOMIC.value,
                           reward=e.reward, gas_cost=e.gas_cost)
                return SubmissionResult(
                    fresh.id, OrderOutcome.SKIPPED, skip_reason=SkipReason.UNECONOMIC,
                    category=e.category, error=str(e), attempts=attempts,
                )

            except RewardClaimExceededError as e:
                self.quarantine.quarantine_now(fresh.id, cycle, str(e))
                logger.error("Refusing to over-claim reward on %s: %s", fresh.id, e)
                return SubmissionResult(
                    fresh.id, OrderOutcome.FAILED, category=e.category,
                    error=str(e), attempts=attempts, quarantined=True,
                )

            except RpcTransientError as e:
                if attempts < self.retry_config.max_attempts:
                    delay = self._delay(e, attempts)
                    logger.warning(
                        "Submission for %s attempt %d/%d failed: %s. Retrying in %.1fs",
                        fresh.id, attempts, self.retry_config.max_attempts, e, delay,
                    )
                    await self._sleep(delay)
                    continue
                return await self._fail(fresh.id, cycle, e, attempts, exhausted=True)

            except (TradeScopeError, OnChainAssertionError, RpcResponseError) as e:
                return await self._fail(fresh.id, cycle, e, attempts)

    async def _attempt(self, account: DCAAccount, attempt: int) -> SubmissionResult:
        pair = None
        if not self.orchestrator.use_legacy_init:
            pair = await self.oracle.resolve_pair(
                account.input_type, account.output_type, account.input_decimals, account.output_decimals
            )
        executor = self.executor_address or account.owner
        composed = self.orchestrator.compose(account, pair, executor, self.reward_claim)

        violation = check_price_bounds(account, composed.quote)
        if violation is not None:
            _slog.info("trade_skipped", dca_id=account.id, reason=violation.value)
            return SubmissionResult(account.id, OrderOutcome.SKIPPED, skip_reason=violation, attempts=attempt)

        _slog.info(
            "trade_submitted",
            dca_id=account.id,
            attempt=attempt,
            net_input=composed.quote.net_input,
            min_output=composed.quote.min_output,
            reward=composed.quote.reward_claim,
            dry_run=self.dry_run,
        )
        receipt = await self._send(composed.tx, account.id, reward=composed.quote.reward_claim)

        if self.dry_run:
            return SubmissionResult(
                account.id, OrderOutcome.DRY_RUN, receipt=receipt, attempts=attempt,
            )

        if not receipt.settled:
            _slog.warning("trade_unreconciled", dca_id=account.id, digest=receipt.digest)
            raise OnChainAssertionError(
                "Transaction succeeded without a TradeCompletedEvent",
                dca_id=account.id,
                digest=receipt.digest,
            )

        self.quarantine.record_success(account.id)
        _slog.info(
            "trade_settled",
            dca_id=account.id,
            digest=receipt.digest,
            output_amount=receipt.output_amount,
            executor_reward=receipt.executor_reward,
            remaining_orders=receipt.remaining_orders,
            deactivation=receipt.deactivation_reason.description if receipt.deactivation_reason is not None else None,
        )
        if self.alerter is not None:
            await self.alerter.trade_settled(account.id, receipt)
        return SubmissionResult(
            account.id, OrderOutcome.SETTLED, digest=receipt.digest, receipt=receipt, attempts=attempt,
        )

    # ---------------------------
    # Failure handling
    # ---------------------------
    def _delay(self, error: RpcTransientError, attempt: int) -> float:
        if error.retry_after:
            return min(error.retry_after, self.retry_config.max_delay_seconds)
        return self.retry_config.get_delay(attempt - 1)

    async def _fail(
        self,
        dca_id: str,
        cycle: int,
        error: Exception,
        attempts: int,
        exhausted: bool = False,
    ) -> SubmissionResult:
        """Record a terminal failure. `exhausted` quarantines at once: the retries are already spent."""
        category = getattr(error, "category", ErrorCategory.UNKNOWN)
        digest = getattr(error, "digest", None)
        systemic = bool(getattr(getattr(error, "context", None), "systemic", False))
        if exhausted:
            self.quarantine.quarantine_now(dca_id, cycle, str(error), category)
            quarantined = True
        else:
            quarantined = self.quarantine.record_failure(dca_id, cycle, str(error), category)
        _slog.warning(
            "trade_failed",
            dca_id=dca_id,
            category=category.value,
            digest=digest,
            attempts=attempts,
            quarantined=quarantined,
            error=str(error),
        )
        if quarantined and self.alerter is not None:
            await self.alerter.account_quarantined(dca_id, category.value, str(error), self.quarantine.quarantine_cycles)
        return SubmissionResult(
            dca_id,
            OrderOutcome.FAILED,
            digest=digest,
            category=category,
            error=str(error),
            attempts=attempts,
            quarantined=quarantined,
            systemic=systemic,
        )

    # ---------------------------
    # Transport
    # ---------------------------
    async def _send(
        self,
        tx: ProgrammableTransaction,
        dca_id: str,
        reward: Optional[int] = None,
    ) -> TradeReceipt:
        """Resolve, sign and submit `tx` (or only dry-run it); returns the reconciled receipt."""
        if self.keypair is None:
            # Dry run without a wallet: composition only.
            logger.info("Dry run for %s: %s", dca_id, tx.describe())
            return TradeReceipt(dca_id=dca_id)

        sender = self.keypair.address
        await self._resolve_shared_versions(tx, dca_id)
        gas = await self._gas_config(sender)
        tx_bytes = tx.to_bytes(sender, gas)
        encoded = base64.b64encode(tx_bytes).decode("ascii")

        gas_cost = None
        if self.preflight or self.dry_run:
            simulated = await self.client.dry_run(encoded)
            effects = simulated.get("effects") or {}
            self._raise_for_status(effects, dca_id)
            gas_cost = estimate_gas_cost(effects.get("gasUsed") or {})
            if reward is not None and gas_cost > reward:
                raise EconomicInfeasibleError(
                    f"Gas {gas_cost} exceeds reward {reward} for {dca_id}",
                    reward=reward,
                    gas_cost=gas_cost,
                )
            if self.dry_run:
                events = parse_protocol_events(simulated.get("events") or [], self.orchestrator.package_id)
                return TradeReceipt.from_events(dca_id, events, gas_cost=gas_cost)

        signature = self.keypair.sign_transaction(tx_bytes)
        try:
            response = await self.client.execute(encoded, [signature])
        except RpcResponseError as e:
            raise classify_abort(str(e), dca_id=dca_id) from e

        digest = response.get("digest")
        effects = response.get("effects") or {}
        self._raise_for_status(effects, dca_id, digest)
        events = parse_protocol_events(response.get("events") or [], self.orchestrator.package_id)
        return TradeReceipt.from_events(
            dca_id,
            events,
            digest=digest,
            gas_cost=estimate_gas_cost(effects.get("gasUsed") or {}),
        )

    @staticmethod
    def _raise_for_status(effects: Dict[str, Any], dca_id: str, digest: Optional[str] = None) -> None:
        status = effects.get("status") or {}
        if status.get("status", "success") != "success":
            raise classify_abort(status.get("error") or "Transaction failed", dca_id=dca_id, digest=digest)

    async def _resolve_shared_versions(self, tx: ProgrammableTransaction, dca_id: str) -> None:
        unresolved = tx.unresolved_shared_objects()
        if not unresolved:
            return
        responses = await self.client.multi_get_objects(unresolved, show_content=False, show_owner=True)
        versions: Dict[str, int] = {}
        for object_id, response in zip(unresolved, responses or []):
            owner = (response.get("data") or {}).get("owner") or {}
            shared = owner.get("Shared") if isinstance(owner, dict) else None
            if shared:
                versions[object_id] = int(shared["initial_shared_version"])
        missing = [object_id for object_id in unresolved if object_id not in versions]
        if normalize_address(dca_id) in {normalize_address(m) for m in missing}:
            raise AlreadyResolvedError(f"Account {dca_id} no longer exists", dca_id=dca_id)
        if missing:
            raise OnChainAssertionError(
                f"Shared objects not found or not shared: {', '.join(missing)}",
                dca_id=dca_id,
            )
        tx.resolve_shared_versions(versions)

    async def _gas_config(self, sender: str) -> GasConfig:
        page = await self.client.get_coins(sender)
        coins: List[Dict[str, Any]] = (page or {}).get("data") or []
        usable = [c for c in coins if int(c.get("balance", 0)) >= self.gas_budget]
        if not usable:
            raise ExecutorWalletError(
                f"No SUI coin with at least {self.gas_budget} MIST for gas",
                address=sender,
            )
        coin = max(usable, key=lambda c: int(c["balance"]))
        price = await self.client.get_reference_gas_price()
        return GasConfig(
            payment=[ObjectRef(coin["coinObjectId"], int(coin["version"]), coin["digest"])],
            owner=sender,
            price=price,
            budget=self.gas_budget,
        )
