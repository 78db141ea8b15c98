"""
Swap adapters.

The swap leg sits between `init_trade` and `resolve_trade` in every trade
transaction. An adapter appends the Move calls that turn the input coin
into an output coin; the protocol enforces the minimum output itself when
the trade is resolved.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict

from ...sui.bcs import normalize_address
from ...sui.transactions import Argument, ProgrammableTransaction


class SwapAdapter(ABC):
    """Appends a swap of `coin_in` to the transaction and returns the output coin."""

    name: str

    @abstractmethod
    def add_swap(
        self,
        tx: ProgrammableTransaction,
        coin_in: Argument,
        input_type: str,
        output_type: str,
    ) -> Argument:
        pass

    def describe(self) -> Dict[str, Any]:
        return {"name": self.name}


class FlowXSwapAdapter(SwapAdapter):
    """Direct single-pool swap through the FlowX AMM router."""

    name = "flowx"

    def __init__(self, package_id: str, container_id: str):
        self.package_id = normalize_address(package_id)
        self.container_id = normalize_address(container_id)

    def add_swap(
        self,
        tx: ProgrammableTransaction,
        coin_in: Argument,
        input_type: str,
        output_type: str,
    ) -> Argument:
        container = tx.shared_object(self.container_id, mutable=True)
        return tx.move_call(
            f"{self.package_id}::router::swap_exact_input_direct",
            arguments=[container, coin_in],
            type_arguments=[input_type, output_type],
        )

    def describe(self) -> Dict[str, Any]:
        return {"name": self.name, "package": self.package_id, "container": self.container_id}


def build_swap_adapter(settings: Any) -> SwapAdapter:
    """Adapter selected by SWAP_ADAPTER."""
    if settings.swap_adapter == "flowx":
        return FlowXSwapAdapter(settings.flowx_package_id, settings.flowx_container_id)
    raise ValueError(f"Unknown swap adapter: {settings.swap_adapter}")
