from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..config import Settings
from ..core.dca.admin import AccountAdmin
from ..core.dca.batch import build_batches
from ..core.dca.models import GlobalConfig, OrderOutcome
from ..core.dca.oracle import OracleResolver
from ..core.dca.orchestrator import TradeOrchestrator
from ..core.dca.scanner import AccountScanner
from ..core.dca.scheduler import DCAScheduler
from ..core.dca.submitter import SubmissionResult, TradeSubmitter
from ..core.dca.swap import build_swap_adapter
from ..core.recovery.errors import (
    ExecutorWalletError,
    RpcResponseError,
    RpcTransientError,
    classify_error,
)
from ..core.recovery.strategies import (
    CircuitBreakerConfig,
    CircuitBreakerStrategy,
    QuarantineBook,
    RetryConfig,
    RetryStrategy,
)
from ..providers.sui_rpc import SuiRpcClient
from ..services.alerts import WebhookAlerter
from ..sui.keypair import SuiKeypair

_slog = structlog.stdlib.get_logger("dca.runtime")

MAX_BACKOFF_MULTIPLIER = 5


@dataclass
class CycleReport:
    cycle: int
    scanned: int = 0
    due: int = 0
    batches: int = 0
    deferred: int = 0
    results: List[SubmissionResult] = field(default_factory=list)
    started_at: Optional[datetime] = None
    duration_ms: int = 0

    def count(self, outcome: OrderOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def systemic_failures(self) -> int:
        return sum(1 for r in self.results if r.systemic)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle": self.cycle,
            "scanned": self.scanned,
            "due": self.due,
            "batches": self.batches,
            "deferred": self.deferred,
            "settled": self.count(OrderOutcome.SETTLED),
            "dry_run": self.count(OrderOutcome.DRY_RUN),
            "already_resolved": self.count(OrderOutcome.ALREADY_RESOLVED),
            "not_due": self.count(OrderOutcome.NOT_DUE),
            "skipped": self.count(OrderOutcome.SKIPPED),
            "failed": self.count(OrderOutcome.FAILED),
            "started_at": _iso(self.started_at),
            "duration_ms": self.duration_ms,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass(slots=True)
class KeeperState:
    status: str = "idle"
    cycles: int = 0
    settled: int = 0
    failed: int = 0
    skipped: int = 0
    benign: int = 0
    consecutive_errors: int = 0
    last_started: Optional[datetime] = None
    last_completed: Optional[datetime] = None
    last_error: Optional[str] = None
    next_run: Optional[datetime] = None
    paused_reason: Optional[str] = None
    last_cycle: Optional[Dict[str, Any]] = None


class KeeperRuntime:
    """Always-on polling loop: scan, filter, batch, submit, sleep."""

    def __init__(
        self,
        settings: Settings,
        client: SuiRpcClient,
        scanner: AccountScanner,
        submitter: TradeSubmitter,
        *,
        breaker: Optional[CircuitBreakerStrategy] = None,
        alerter: Optional[WebhookAlerter] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time,
        timer: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.settings = settings
        self.client = client
        self.scanner = scanner
        self.submitter = submitter
        self.breaker = breaker
        self.alerter = alerter
        self.logger = logger or logging.getLogger("dca_keeper.runtime")
        self._clock = clock
        self._timer = timer
        self._state = KeeperState()
        self._loop_task: asyncio.Task | None = None
        self._cycle_lock = asyncio.Lock()
        self._lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._running = False
        self._started_at: Optional[datetime] = None

    @classmethod
    def from_settings(cls, settings: Settings, *, transport: Any = None) -> "KeeperRuntime":
        """Wire every component from validated settings."""
        breaker = CircuitBreakerStrategy(
            "sui_rpc",
            CircuitBreakerConfig(
                failure_threshold=settings.rpc_failure_threshold,
                timeout_seconds=settings.retry_max_delay_seconds,
            ),
        )
        client = SuiRpcClient(
            settings.rpc_url,
            timeout=settings.rpc_timeout_seconds,
            breaker=breaker,
            transport=transport,
        )
        retry_config = RetryConfig(
            max_attempts=settings.max_submit_attempts,
            initial_delay_seconds=settings.retry_initial_delay_seconds,
            max_delay_seconds=settings.retry_max_delay_seconds,
        )
        scanner = AccountScanner(
            client,
            settings.dca_package_id,
            concurrency=settings.scan_concurrency,
            page_size=settings.scan_page_size,
            retry=RetryStrategy(retry_config),
        )
        oracle = OracleResolver(
            client,
            registry_id=settings.price_feed_registry_id,
            price_info_overrides=settings.price_info_objects,
            max_age_seconds=settings.oracle_max_age_seconds,
            max_skew_seconds=settings.oracle_max_skew_seconds,
            concurrency=settings.scan_concurrency,
        )
        alerter = WebhookAlerter(settings.alert_webhook_url, alert_on_success=settings.alert_on_success)
        keypair = SuiKeypair.from_private_key(settings.executor_private_key) if settings.executor_private_key else None
        submitter = TradeSubmitter(
            client=client,
            scanner=scanner,
            oracle=oracle,
            orchestrator=TradeOrchestrator.from_settings(settings, build_swap_adapter(settings)),
            admin=AccountAdmin.from_settings(settings),
            quarantine=QuarantineBook(settings.quarantine_after_failures, settings.quarantine_cycles),
            keypair=keypair,
            retry_config=retry_config,
            gas_budget=settings.gas_budget,
            reward_claim=settings.executor_reward_claim,
            dry_run=settings.dry_run,
            preflight=settings.preflight_dry_run,
            submit_timeout=settings.submit_timeout_seconds,
            alerter=alerter,
        )
        return cls(settings, client, scanner, submitter, breaker=breaker, alerter=alerter)

    # ---------------------------
    # Lifecycle
    # ---------------------------
    async def start(self) -> None:
        async with self._lock:
            if self._running:
                return
            self._running = True
            self._started_at = datetime.now(timezone.utc)
            self.logger.info(
                "Keeper starting (executor=%s, dry_run=%s)",
                self.submitter.executor_address or "none",
                self.settings.dry_run,
            )
            await self._check_executor_whitelist()
            self._loop_task = asyncio.create_task(self._run_loop(), name="dca-keeper-loop")

    async def stop(self) -> None:
        """Stop scheduling cycles, let the in-flight cycle drain, then cancel."""
        async with self._lock:
            if not self._running:
                return
            self._running = False
            self._wake.set()
            self.logger.info("Keeper stopping")

            if self._loop_task:
                try:
                    await asyncio.wait_for(
                        asyncio.shield(self._loop_task),
                        timeout=self.settings.shutdown_grace_seconds,
                    )
                except asyncio.TimeoutError:
                    self.logger.warning(
                        "In-flight cycle did not drain within %ss; cancelling",
                        self.settings.shutdown_grace_seconds,
                    )
                    self._loop_task.cancel()
                    try:
                        await self._loop_task
                    except asyncio.CancelledError:
                        pass
                self._loop_task = None

            await self.client.close()
            if self.alerter:
                await self.alerter.close()

    @property
    def is_running(self) -> bool:
        return self._running

    def trigger(self) -> bool:
        """Request an immediate cycle. Returns False when the loop is not running."""
        if not self._running:
            return False
        self._wake.set()
        return True

    async def _check_executor_whitelist(self) -> None:
        address = self.submitter.executor_address
        if not address or not self.settings.global_config_id:
            return
        try:
            config = GlobalConfig.from_object(await self.client.get_object(self.settings.global_config_id))
        except (RpcTransientError, RpcResponseError) as exc:
            self.logger.warning("Could not read global config: %s", exc)
            return
        if config.paused:
            self.logger.warning("Protocol is paused; trades will abort until it resumes")
        if not config.allows_executor(address):
            self.logger.warning("Executor %s is not whitelisted; trades will abort", address)

    # ---------------------------
    # Scheduling and execution
    # ---------------------------
    async def _run_loop(self) -> None:
        try:
            while self._running:
                report = await self._run_guarded_cycle()
                if not self._running:
                    break
                if report is not None and report.deferred and not self._state.paused_reason:
                    # Orders left over from a full cycle run again right away.
                    continue
                delay = self._next_delay()
                self._state.next_run = datetime.fromtimestamp(self._clock() + delay, timezone.utc)
                self._wake.clear()
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            return
        except Exception as exc:  # noqa: BLE001
            self.logger.error("Keeper loop crashed: %s", exc, exc_info=True)
            self._running = False

    def _next_delay(self) -> float:
        interval = self.settings.execution_delay_ms / 1000
        multiplier = min(max(1, self._state.consecutive_errors), MAX_BACKOFF_MULTIPLIER)
        delay = interval * multiplier
        if self.breaker is not None and self.breaker.is_open:
            delay = max(delay, self.breaker.time_until_recovery())
        return delay

    async def _run_guarded_cycle(self) -> Optional[CycleReport]:
        state = self._state
        report: Optional[CycleReport] = None
        systemic_reason: Optional[str] = None
        try:
            report = await self.run_cycle()
            if report.systemic_failures:
                systemic_reason = f"{report.systemic_failures} systemic submission failures"
            else:
                state.consecutive_errors = 0
                state.paused_reason = None
                state.last_error = None
        except asyncio.TimeoutError:
            systemic_reason = f"scan timed out after {self.settings.cycle_timeout_seconds}s"
        except (RpcTransientError, ExecutorWalletError) as exc:
            systemic_reason = str(exc)
        except Exception as exc:  # noqa: BLE001
            context = classify_error(exc)
            state.consecutive_errors += 1
            state.last_error = str(exc)
            self.logger.error("Cycle failed (%s): %s", context.category.value, exc, exc_info=True)

        if systemic_reason is not None:
            state.consecutive_errors += 1
            state.last_error = systemic_reason
            state.paused_reason = systemic_reason
            backoff = self._next_delay()
            _slog.warning(
                "keeper_paused",
                reason=systemic_reason,
                consecutive_errors=state.consecutive_errors,
                backoff_seconds=backoff,
            )
            if self.alerter:
                await self.alerter.keeper_paused(systemic_reason, backoff, state.consecutive_errors)
        return report

    async def run_cycle(self) -> CycleReport:
        """One scan → filter → batch → submit pass. Cycles never overlap.

        `cycle_timeout_seconds` bounds the scan and the time in which new orders
        may start. An order already submitted always runs to its own outcome
        (bounded by the submit timeout); orders not started in time are
        deferred to the next cycle.
        """
        async with self._cycle_lock:
            state = self._state
            state.cycles += 1
            state.status = "running"
            state.last_started = datetime.now(timezone.utc)
            report = CycleReport(cycle=state.cycles, started_at=state.last_started)
            started = self._timer()
            budget = self.settings.cycle_timeout_seconds
            try:
                scan = await asyncio.wait_for(self.scanner.scan(), timeout=budget)
                report.scanned = len(scan.accounts)
                due = DCAScheduler.select_due(scan.accounts, int(self._clock() * 1000))
                report.due = len(due)
                batches = build_batches(due, self.settings.max_batch_size)
                report.batches = len(batches)

                pending = [account for batch in batches for account in batch]
                for index, account in enumerate(pending):
                    if self._timer() - started >= budget:
                        report.deferred = len(pending) - index
                        _slog.warning(
                            "cycle_budget_exhausted",
                            cycle=report.cycle,
                            deferred=report.deferred,
                            budget_seconds=budget,
                        )
                        break
                    result = await self.submitter.execute_order(account, report.cycle)
                    report.results.append(result)
                    self._tally(result)
            finally:
                report.duration_ms = int((self._timer() - started) * 1000)
                state.status = "idle"
                state.last_completed = datetime.now(timezone.utc)
                state.last_cycle = report.to_dict()

            _slog.info(
                "cycle_completed",
                cycle=report.cycle,
                scanned=report.scanned,
                due=report.due,
                deferred=report.deferred,
                settled=report.count(OrderOutcome.SETTLED),
                failed=report.count(OrderOutcome.FAILED),
                duration_ms=report.duration_ms,
            )
            return report

    def _tally(self, result: SubmissionResult) -> None:
        if result.success:
            self._state.settled += 1
        elif result.outcome == OrderOutcome.FAILED:
            self._state.failed += 1
        elif result.outcome in (OrderOutcome.ALREADY_RESOLVED, OrderOutcome.NOT_DUE):
            self._state.benign += 1
        else:
            self._state.skipped += 1

    # ---------------------------
    # Introspection
    # ---------------------------
    def status(self) -> dict[str, Any]:
        state = self._state
        cycle = state.cycles
        return {
            "running": self._running,
            "started_at": _iso(self._started_at),
            "status": state.status,
            "executor": self.submitter.executor_address,
            "dry_run": self.settings.dry_run,
            "cycles": cycle,
            "settled": state.settled,
            "failed": state.failed,
            "skipped": state.skipped,
            "benign": state.benign,
            "consecutive_errors": state.consecutive_errors,
            "paused_reason": state.paused_reason,
            "last_error": state.last_error,
            "last_started": _iso(state.last_started),
            "last_completed": _iso(state.last_completed),
            "next_run": _iso(state.next_run),
            "circuit_breaker": self.breaker.state.value if self.breaker else None,
            "quarantined": self.submitter.quarantine.quarantined(cycle),
            "deactivation_candidates": sorted(self.submitter.deactivation_candidates),
            "last_cycle": state.last_cycle,
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.astimezone(timezone.utc).isoformat() if value else None
