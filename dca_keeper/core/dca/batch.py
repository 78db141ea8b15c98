"""
Batch Builder

Partitions the due orders of one cycle into batches of at most
`max_batch_size`. A batch is a scheduling unit: the runtime walks batches in
order and submits each order in a batch as its own transaction, so one bad
order never takes its neighbours down with it.
"""

from __future__ import annotations

from typing import List, Sequence, TypeVar

T = TypeVar("T")

MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 100


def build_batches(orders: Sequence[T], max_batch_size: int) -> List[List[T]]:
    """Split `orders` into consecutive batches, preserving order."""
    if not MIN_BATCH_SIZE <= max_batch_size <= MAX_BATCH_SIZE:
        raise ValueError(
            f"max_batch_size must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}, got {max_batch_size}"
        )
    return [list(orders[i:i + max_batch_size]) for i in range(0, len(orders), max_batch_size)]
