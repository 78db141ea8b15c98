"""
Account lifecycle transactions.

Builders for account creation, package-version upgrades and the owner-side
entry points (delegatee, slippage, pause/resume, withdrawals, cancellation).
The live global config is only consulted here, for new accounts, and is
passed in by value.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from ...sui.bcs import normalize_address, normalize_type
from ...sui.transactions import GAS_COIN, Argument, ObjectRef, ProgrammableTransaction
from .models import BPS_DENOMINATOR, DCAAccount, GlobalConfig, TimeScale
from .scheduler import DCAScheduler
from .tokens import SUI_COIN_TYPE

ZERO_ADDRESS = "0x" + "0" * 64


@dataclass(frozen=True)
class AccountRequest:
    """Parameters for a new DCA account."""
    input_type: str
    output_type: str
    total_amount: int
    total_orders: int
    every: int
    time_scale: TimeScale
    input_decimals: int
    output_decimals: int
    accepted_terms_version: int
    start_time_ms: int = 0
    delegatee: str = ZERO_ADDRESS

    @property
    def split_allocation(self) -> int:
        return self.total_amount // self.total_orders if self.total_orders else 0


def validate_account_request(request: AccountRequest, config: GlobalConfig) -> List[str]:
    """Problems that would make `init_account` abort under `config`."""
    problems: List[str] = []
    if config.paused:
        problems.append("protocol is paused")
    if request.total_orders <= 0:
        problems.append("total_orders must be positive")
    elif config.max_orders_per_account and request.total_orders > config.max_orders_per_account:
        problems.append(f"total_orders exceeds maximum of {config.max_orders_per_account}")
    if request.every <= 0:
        problems.append("every must be positive")
    interval = DCAScheduler.interval_seconds(max(request.every, 0), request.time_scale)
    if interval < config.min_interval_seconds:
        problems.append(f"interval {interval}s is below minimum of {config.min_interval_seconds}s")
    if request.total_orders > 0 and request.split_allocation < config.min_funding_per_trade:
        problems.append(f"funding per trade is below minimum of {config.min_funding_per_trade}")
    return problems


class AccountAdmin:
    """
    Builds non-trade transactions against the DCA package.

    Example usage:
        admin = AccountAdmin.from_settings(settings)
        tx = admin.set_slippage(account, 150, max_slippage_bps=500)
    """

    def __init__(
        self,
        package_id: str,
        global_config_id: str,
        terms_registry_id: Optional[str] = None,
        clock_id: str = "0x6",
    ):
        self.package_id = normalize_address(package_id)
        self.global_config_id = normalize_address(global_config_id)
        self.terms_registry_id = normalize_address(terms_registry_id) if terms_registry_id else None
        self.clock_id = normalize_address(clock_id)

    @classmethod
    def from_settings(cls, settings: Any) -> "AccountAdmin":
        return cls(
            package_id=settings.dca_package_id,
            global_config_id=settings.global_config_id,
            terms_registry_id=settings.terms_registry_id or None,
            clock_id=settings.clock_id,
        )

    def _target(self, function: str) -> str:
        return f"{self.package_id}::dca::{function}"

    def _account_call(
        self,
        account: DCAAccount,
        function: str,
        extra: Sequence[Argument] = (),
        tx: Optional[ProgrammableTransaction] = None,
    ) -> ProgrammableTransaction:
        tx = tx or ProgrammableTransaction()
        dca = tx.shared_object(account.id, mutable=True)
        tx.move_call(self._target(function), arguments=[dca, *extra], type_arguments=account.type_arguments)
        return tx

    # ---------------------------
    # Creation
    # ---------------------------
    def init_account(
        self,
        request: AccountRequest,
        config: GlobalConfig,
        input_coins: Sequence[ObjectRef] = (),
    ) -> ProgrammableTransaction:
        """
        Create an account funded with `request.total_amount` plus the reward escrow.

        The escrow is `config.executor_reward_per_trade × total_orders`, split
        from gas. Non-SUI input is merged from `input_coins` and split.
        """
        if self.terms_registry_id is None:
            raise ValueError("TERMS_REGISTRY_ID is required to create accounts")
        problems = validate_account_request(request, config)
        if problems:
            raise ValueError("Invalid account request: " + "; ".join(problems))

        tx = ProgrammableTransaction()
        reward_coin = tx.split_coins(GAS_COIN, [config.executor_reward_per_trade * request.total_orders])

        if normalize_type(request.input_type) == normalize_type(SUI_COIN_TYPE):
            input_coin = tx.split_coins(GAS_COIN, [request.total_amount])
        else:
            if not input_coins:
                raise ValueError(f"No {request.input_type} coins supplied")
            primary, *others = [tx.owned_object(ref) for ref in input_coins]
            if others:
                tx.merge_coins(primary, others)
            input_coin = tx.split_coins(primary, [request.total_amount])

        tx.move_call(
            self._target("init_account"),
            arguments=[
                tx.shared_object(self.global_config_id, mutable=False),
                tx.shared_object(self.terms_registry_id, mutable=False),
                tx.shared_object(self.clock_id, mutable=False),
                tx.pure_address(request.delegatee),
                input_coin[0],
                tx.pure_u64(request.every),
                tx.pure_u64(request.total_orders),
                tx.pure_u8(int(request.time_scale)),
                tx.pure_u64(request.start_time_ms),
                tx.pure_u64(request.accepted_terms_version),
                tx.pure_u8(request.input_decimals),
                tx.pure_u8(request.output_decimals),
                reward_coin[0],
            ],
            type_arguments=[request.input_type, request.output_type],
        )
        return tx

    # ---------------------------
    # Maintenance
    # ---------------------------
    def check_version_and_upgrade(
        self,
        account: DCAAccount,
        tx: Optional[ProgrammableTransaction] = None,
    ) -> ProgrammableTransaction:
        return self._account_call(account, "check_version_and_upgrade", tx=tx)

    # ---------------------------
    # Owner actions
    # ---------------------------
    def set_delegatee(self, account: DCAAccount, delegatee: str) -> ProgrammableTransaction:
        tx = ProgrammableTransaction()
        return self._account_call(account, "set_delegatee", [tx.pure_address(delegatee)], tx=tx)

    def set_slippage(
        self,
        account: DCAAccount,
        slippage_bps: int,
        max_slippage_bps: Optional[int] = None,
    ) -> ProgrammableTransaction:
        """Override slippage; refuses a value above the protocol maximum."""
        limit = max_slippage_bps
        if limit is None:
            limit = account.config_snapshot.max_slippage_bps
        if limit is None:
            limit = BPS_DENOMINATOR
        if not 0 < slippage_bps <= limit:
            raise ValueError(f"slippage_bps must be between 1 and {limit}, got {slippage_bps}")
        tx = ProgrammableTransaction()
        config = tx.shared_object(self.global_config_id, mutable=False)
        return self._account_call(account, "set_slippage", [config, tx.pure_u64(slippage_bps)], tx=tx)

    def reset_slippage(self, account: DCAAccount) -> ProgrammableTransaction:
        return self._account_call(account, "reset_slippage")

    def set_inactive(self, account: DCAAccount) -> ProgrammableTransaction:
        return self._account_call(account, "set_inactive")

    def reactivate_as_owner(self, account: DCAAccount) -> ProgrammableTransaction:
        return self._account_call(account, "reactivate_as_owner")

    def redeem_funds_and_deactivate(self, account: DCAAccount) -> ProgrammableTransaction:
        return self._account_call(account, "redeem_funds_and_deactivate")

    def withdraw_input(self, account: DCAAccount, amount: int, decrease_orders: int = 0) -> ProgrammableTransaction:
        if amount <= 0:
            raise ValueError("amount must be positive")
        if amount > account.input_balance:
            raise ValueError(f"amount {amount} exceeds input balance {account.input_balance}")
        if decrease_orders > account.remaining_orders:
            raise ValueError("cannot remove more orders than remain")
        tx = ProgrammableTransaction()
        return self._account_call(
            account,
            "withdraw_input",
            [tx.pure_u64(amount), tx.pure_u64(decrease_orders)],
            tx=tx,
        )

    def add_executor_reward(self, account: DCAAccount, amount: int) -> ProgrammableTransaction:
        """Top up the reward escrow with `amount` MIST split from gas."""
        if amount <= 0:
            raise ValueError("amount must be positive")
        tx = ProgrammableTransaction()
        coin = tx.split_coins(GAS_COIN, [amount])
        return self._account_call(account, "add_executor_reward", [coin[0]], tx=tx)
