"""
DCA Scheduler

Due-order filter: decides which accounts have an order due at a given time
and orders them deterministically. Pure functions of the snapshots and the
clock value passed in.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from .models import MS_PER_SECOND, DCAAccount, SkipReason, TimeScale


class DCAScheduler:
    """Calculates DCA due times from on-chain schedules."""

    @staticmethod
    def interval_seconds(every: int, time_scale: TimeScale) -> int:
        """Seconds between orders for `every` units of `time_scale`."""
        if every < 0:
            raise ValueError("every cannot be negative")
        return every * TimeScale(time_scale).seconds

    @staticmethod
    def next_due_ms(account: DCAAccount) -> int:
        """Earliest clock time at which the next order may execute."""
        return account.last_time_ms + account.interval_seconds * MS_PER_SECOND

    @staticmethod
    def why_not_due(account: DCAAccount, now_ms: int) -> Optional[SkipReason]:
        """
        Return the first reason the account is not due, or None if it is.

        Elapsed time is compared in whole seconds, matching the on-chain
        `(now_ms - last_time_ms) / 1000 >= interval` check.
        """
        if not account.active:
            return SkipReason.INACTIVE
        if account.remaining_orders <= 0:
            return SkipReason.NO_REMAINING_ORDERS
        elapsed_seconds = (now_ms - account.last_time_ms) // MS_PER_SECOND
        if elapsed_seconds < DCAScheduler.interval_seconds(account.every, account.time_scale):
            return SkipReason.NOT_YET_DUE
        if account.input_balance < account.split_allocation:
            return SkipReason.INSUFFICIENT_INPUT
        if account.executor_reward_balance < account.config_snapshot.executor_reward_per_trade:
            return SkipReason.INSUFFICIENT_REWARD
        return None

    @staticmethod
    def is_due(account: DCAAccount, now_ms: int) -> bool:
        return DCAScheduler.why_not_due(account, now_ms) is None

    @staticmethod
    def select_due(accounts: Iterable[DCAAccount], now_ms: int) -> List[DCAAccount]:
        """Due accounts, oldest `last_time_ms` first, ties broken by account id."""
        due = [a for a in accounts if DCAScheduler.is_due(a, now_ms)]
        return sorted(due, key=lambda a: (a.last_time_ms, a.id))

    @staticmethod
    def format_schedule_description(account: DCAAccount) -> str:
        """Generate human-readable schedule description."""
        unit = account.time_scale.name.lower()
        if account.every == 1:
            unit = unit[:-1]
        return (
            f"Every {account.every} {unit}, "
            f"{account.remaining_orders}/{account.initial_orders} orders left"
        )
