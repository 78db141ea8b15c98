#!/usr/bin/env python3
"""
DCA keeper CLI for inspecting accounts without running the loop
"""

import argparse
import asyncio
import json
import sys
import time

from dca_keeper.config import load_settings
from dca_keeper.core.dca import DCAScheduler
from dca_keeper.core.dca.orchestrator import check_price_bounds, quote_trade
from dca_keeper.core.dca.tokens import display_symbol
from dca_keeper.core.recovery.errors import ConfigError, RecoverableError, UnrecoverableError
from dca_keeper.logging_config import setup_logging
from dca_keeper.runtime import KeeperRuntime


def _now_ms() -> int:
    return int(time.time() * 1000)


def _build_runtime(dry_run: bool = True) -> KeeperRuntime:
    settings = load_settings(dry_run=dry_run)
    setup_logging(settings.log_level, settings.log_json)
    return KeeperRuntime.from_settings(settings)


async def cli_discover():
    """List every account the scanner can see"""
    runtime = _build_runtime()
    try:
        print("🔍 Scanning DCA accounts...")
        scan = await runtime.scanner.scan()
    finally:
        await runtime.client.close()

    now = _now_ms()
    print(f"\n📋 {len(scan.accounts)} accounts ({len(scan.active)} active, {len(scan.errors)} errors)")
    print("=" * 60)
    for account in scan.accounts:
        reason = DCAScheduler.why_not_due(account, now)
        status = "due" if reason is None else reason.value
        pair = f"{display_symbol(account.input_type)} -> {display_symbol(account.output_type)}"
        print(f" - {account.id} {pair} [{status}]")
        print(f"   {DCAScheduler.format_schedule_description(account)}")

    for error in scan.errors:
        print(f"⚠️  {error}")


async def cli_due():
    """Print due accounts in execution order"""
    runtime = _build_runtime()
    try:
        scan = await runtime.scanner.scan()
    finally:
        await runtime.client.close()

    due = DCAScheduler.select_due(scan.accounts, _now_ms())
    if not due:
        print("No orders are due")
        return

    print(f"⏰ {len(due)} due orders")
    for position, account in enumerate(due, 1):
        print(
            f" {position}. {account.id} remaining={account.remaining_orders} "
            f"split={account.split_allocation} last={account.last_time_ms}"
        )


async def cli_inspect(account_id: str):
    """Show one account with a live quote"""
    runtime = _build_runtime()
    try:
        account = await runtime.scanner.refresh(account_id)
        if account is None:
            print(f"❌ Account {account_id} not found or not a DCA account")
            return

        print(f"\n📄 Account {account.id}")
        print("=" * 60)
        print(json.dumps(account.to_dict(), indent=2, default=str))

        reason = DCAScheduler.why_not_due(account, _now_ms())
        print(f"\nSchedule: {DCAScheduler.format_schedule_description(account)}")
        print(f"Due: {'yes' if reason is None else f'no ({reason.value})'}")

        try:
            pair = await runtime.submitter.oracle.resolve_pair(
                account.input_type,
                account.output_type,
                account.input_decimals,
                account.output_decimals,
            )
        except (RecoverableError, UnrecoverableError) as exc:
            print(f"⚠️  Oracle unavailable: {exc}")
            return

        quote = quote_trade(account, pair, runtime.settings.executor_reward_claim)
        print("\n💱 Quote")
        print(json.dumps({**quote.to_dict(), "prices": pair.to_dict()}, indent=2, default=str))
        violation = check_price_bounds(account, quote)
        if violation is not None:
            print(f"⚠️  Price bound: {violation.value}")
    finally:
        await runtime.client.close()


async def cli_run_once(dry_run: bool) -> int:
    """Run a single keeper cycle and print the report"""
    settings = load_settings(dry_run=True) if dry_run else load_settings()
    setup_logging(settings.log_level, settings.log_json)
    settings.validate_for_keeper()
    runtime = KeeperRuntime.from_settings(settings)
    try:
        report = await runtime.run_cycle()
    finally:
        await runtime.client.close()

    print(json.dumps(report.to_dict(), indent=2, default=str))
    return 0 if not report.systemic_failures else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="DCA Keeper CLI")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("discover", help="List all DCA accounts with their schedule")
    subparsers.add_parser("due", help="List orders that are due now")

    inspect_parser = subparsers.add_parser("inspect", help="Show one account with a live quote")
    inspect_parser.add_argument("account_id", help="DCA account object id")

    run_parser = subparsers.add_parser("run", help="Run one keeper cycle")
    run_parser.add_argument("--dry-run", action="store_true", help="Simulate trades without submitting")

    return parser


async def main() -> int:
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    command = args.command.lower()

    try:
        if command == "discover":
            await cli_discover()

        elif command == "due":
            await cli_due()

        elif command == "inspect":
            await cli_inspect(args.account_id)

        elif command == "run":
            return await cli_run_once(args.dry_run)

        else:
            print(f"❌ Unknown command: {command}")
            parser.print_help()
            return 1
    except ConfigError as exc:
        for problem in exc.problems or [str(exc)]:
            print(f"❌ {problem}")
        return 2

    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
