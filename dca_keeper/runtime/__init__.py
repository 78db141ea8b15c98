from __future__ import annotations

from typing import Optional

from .runtime import CycleReport, KeeperRuntime
from ..config import get_settings


_runtime: Optional[KeeperRuntime] = None


def get_runtime() -> KeeperRuntime:
    global _runtime
    if _runtime is None:
        _runtime = KeeperRuntime.from_settings(get_settings())
    return _runtime


def set_runtime(runtime: Optional[KeeperRuntime]) -> None:
    global _runtime
    _runtime = runtime


__all__ = ["get_runtime", "set_runtime", "CycleReport", "KeeperRuntime"]
