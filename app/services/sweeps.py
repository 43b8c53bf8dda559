"""Bounded concurrent execution of sweep items."""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import SessionFactory

logger = structlog.get_logger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


async def run_bounded(
    items: Iterable[ItemT],
    worker: Callable[[AsyncSession, ItemT], Awaitable[ResultT]],
    session_factory: SessionFactory,
    on_error: Callable[[ItemT, Exception], ResultT],
    concurrency: int | None = None,
) -> list[ResultT]:
    """
    Run ``worker`` for every item with at most ``concurrency`` in flight.

    Each item gets its own database session. Results come back in item order.
    Workers convert their own failures into results; anything that still
    escapes, including session setup and teardown errors, is turned into a
    result by ``on_error`` so one item never aborts the batch.

    Args:
        items: Sweep candidates
        worker: Coroutine function taking (session, item)
        session_factory: Factory for per-item sessions
        on_error: Builds the failed result of an item from its exception
        concurrency: Maximum parallel items, defaults to the configured value

    Returns:
        Worker results in item order
    """
    candidates = list(items)
    semaphore = asyncio.Semaphore(max(1, concurrency or settings.automation_sweep_concurrency))

    async def run_one(item: ItemT) -> ResultT:
        async with semaphore:
            async with session_factory() as session:
                return await worker(session, item)

    outcomes = await asyncio.gather(
        *(run_one(item) for item in candidates),
        return_exceptions=True,
    )

    results: list[ResultT] = []
    for item, outcome in zip(candidates, outcomes):
        if isinstance(outcome, Exception):
            logger.error("sweep_item_failed", item=str(item), error=str(outcome))
            results.append(on_error(item, outcome))
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            results.append(outcome)
    return results
