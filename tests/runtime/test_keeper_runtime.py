"""
Tests for the keeper polling loop.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from dca_keeper.config import Settings
from dca_keeper.core.dca.models import OrderOutcome, SkipReason
from dca_keeper.core.dca.scanner import ScanResult
from dca_keeper.core.dca.submitter import SubmissionResult
from dca_keeper.core.recovery.errors import ErrorCategory, RpcTransientError
from dca_keeper.core.recovery.strategies import QuarantineBook
from dca_keeper.runtime import KeeperRuntime


NOW = 1_700_000_000


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        dca_package_id="0xdca",
        global_config_id="0xc0f",
        fee_tracker_id="0xfee",
        price_feed_registry_id="0x7e9",
        dry_run=True,
        max_batch_size=2,
        execution_delay_ms=1_000,
    )


@pytest.fixture
def submitter():
    submitter = MagicMock()
    submitter.executor_address = None
    submitter.quarantine = QuarantineBook()
    submitter.deactivation_candidates = set()

    async def execute(account, cycle):
        return SubmissionResult(account.id, OrderOutcome.SETTLED, digest=f"tx-{account.id[-1]}")

    submitter.execute_order = AsyncMock(side_effect=execute)
    return submitter


def make_runtime(settings, submitter, accounts=(), alerter=None, **kwargs):
    scanner = AsyncMock()
    scanner.scan.return_value = ScanResult(accounts=list(accounts), total=len(accounts))
    return KeeperRuntime(settings, AsyncMock(), scanner, submitter, alerter=alerter, clock=lambda: NOW, **kwargs)


# =============================================================================
# Cycle Tests
# =============================================================================

class TestRunCycle:
    """Tests for a single scan-filter-batch-submit pass."""

    @pytest.mark.asyncio
    async def test_only_due_accounts_submitted(self, settings, submitter, make_account):
        due = [make_account(id=f"0x{i}") for i in range(1, 4)]
        waiting = make_account(id="0x9", last_time_ms=NOW * 1000)
        runtime = make_runtime(settings, submitter, due + [waiting])

        report = await runtime.run_cycle()

        assert report.scanned == 4
        assert report.due == 3
        assert report.batches == 2
        assert report.count(OrderOutcome.SETTLED) == 3
        submitted = [call.args[0].id for call in submitter.execute_order.await_args_list]
        assert submitted == [a.id for a in due]

    @pytest.mark.asyncio
    async def test_empty_scan(self, settings, submitter):
        runtime = make_runtime(settings, submitter)

        report = await runtime.run_cycle()

        assert report.to_dict()["due"] == 0
        submitter.execute_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_counters_and_status(self, settings, submitter, make_account):
        outcomes = iter([
            SubmissionResult("0x1", OrderOutcome.SETTLED),
            SubmissionResult("0x2", OrderOutcome.ALREADY_RESOLVED),
            SubmissionResult("0x3", OrderOutcome.SKIPPED, skip_reason=SkipReason.UNECONOMIC),
        ])
        submitter.execute_order.side_effect = lambda account, cycle: next(outcomes)
        accounts = [make_account(id=f"0x{i}") for i in range(1, 4)]
        runtime = make_runtime(settings, submitter, accounts)

        await runtime.run_cycle()
        status = runtime.status()

        assert status["cycles"] == 1
        assert status["settled"] == 1
        assert status["benign"] == 1
        assert status["skipped"] == 1
        assert status["status"] == "idle"
        assert status["last_cycle"]["skipped"] == 1

    @pytest.mark.asyncio
    async def test_budget_defers_unstarted_orders(self, settings, submitter, make_account):
        """An order in flight when the budget runs out finishes; later ones wait."""
        now = [0.0]
        log = []

        async def slow(account, cycle):
            log.append(f"start {account.id}")
            await asyncio.sleep(0)
            now[0] += 20
            log.append(f"done {account.id}")
            return SubmissionResult(account.id, OrderOutcome.SETTLED)

        submitter.execute_order.side_effect = slow
        accounts = [make_account(id=f"0x{i}") for i in range(1, 6)]
        runtime = make_runtime(settings, submitter, accounts, timer=lambda: now[0])

        report = await runtime._run_guarded_cycle()

        assert log == ["start 0x1", "done 0x1", "start 0x2", "done 0x2", "start 0x3", "done 0x3"]
        assert report.count(OrderOutcome.SETTLED) == 3
        assert report.deferred == 2
        assert report.to_dict()["deferred"] == 2
        assert runtime.status()["paused_reason"] is None
        assert runtime.status()["consecutive_errors"] == 0

    @pytest.mark.asyncio
    async def test_slow_scan_pauses(self, settings, submitter):
        async def hang():
            await asyncio.sleep(10)

        runtime = make_runtime(settings.model_copy(update={"cycle_timeout_seconds": 0.01}), submitter)
        runtime.scanner.scan.side_effect = hang

        assert await runtime._run_guarded_cycle() is None
        assert runtime.status()["paused_reason"] == "scan timed out after 0.01s"
        submitter.execute_order.assert_not_awaited()


# =============================================================================
# Guarded Cycle Tests
# =============================================================================

class TestGuardedCycle:
    """Tests for systemic failure handling and backoff."""

    @pytest.mark.asyncio
    async def test_rpc_outage_pauses_with_backoff(self, settings, submitter):
        alerter = AsyncMock()
        runtime = make_runtime(settings, submitter, alerter=alerter)
        runtime.scanner.scan.side_effect = RpcTransientError("connection refused")

        assert await runtime._run_guarded_cycle() is None
        await runtime._run_guarded_cycle()

        status = runtime.status()
        assert status["consecutive_errors"] == 2
        assert status["paused_reason"] == "connection refused"
        assert runtime._next_delay() == 2.0
        assert alerter.keeper_paused.await_count == 2

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, settings, submitter):
        runtime = make_runtime(settings, submitter)
        runtime._state.consecutive_errors = 50

        assert runtime._next_delay() == 5.0

    @pytest.mark.asyncio
    async def test_recovery_clears_pause(self, settings, submitter):
        runtime = make_runtime(settings, submitter)
        runtime.scanner.scan.side_effect = [RpcTransientError("down"), ScanResult()]

        await runtime._run_guarded_cycle()
        await runtime._run_guarded_cycle()

        status = runtime.status()
        assert status["consecutive_errors"] == 0
        assert status["paused_reason"] is None

    @pytest.mark.asyncio
    async def test_systemic_submission_failure_pauses(self, settings, submitter, make_account):
        submitter.execute_order.side_effect = None
        submitter.execute_order.return_value = SubmissionResult(
            "0x1", OrderOutcome.FAILED, category=ErrorCategory.NETWORK, systemic=True
        )
        runtime = make_runtime(settings, submitter, [make_account()])

        report = await runtime._run_guarded_cycle()

        assert report.systemic_failures == 1
        assert runtime.status()["paused_reason"] == "1 systemic submission failures"

    @pytest.mark.asyncio
    async def test_trigger_requires_running_loop(self, settings, submitter):
        runtime = make_runtime(settings, submitter)
        assert runtime.trigger() is False
