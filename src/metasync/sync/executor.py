"""
Bounded concurrency for queued catalog operations.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Sequence

from ..config import ConcurrencyConfig


logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[None]]


async def execute_operations(operations: Sequence[Operation], limit: int = 5) -> None:
    """
    Run queued operations with at most ``limit`` in flight.

    Every operation is awaited before the first failure is raised, so no
    task is left running against a transaction that is about to roll back.
    """
    if not operations:
        return

    semaphore = asyncio.Semaphore(max(1, limit))

    async def run(operation: Operation) -> None:
        async with semaphore:
            await operation()

    results = await asyncio.gather(*(run(op) for op in operations), return_exceptions=True)
    errors: List[BaseException] = [r for r in results if isinstance(r, BaseException)]
    if errors:
        logger.error(f"{len(errors)} of {len(operations)} queued operations failed")
        raise errors[0]


async def execute_for_client(
    operations: Sequence[Operation], client: str, concurrency: ConcurrencyConfig
) -> None:
    """Run operations under the limit configured for a database client type."""
    await execute_operations(operations, concurrency.limit_for(client))
