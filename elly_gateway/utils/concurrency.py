"""Concurrent fan-out with per-branch failure isolation"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Hashable, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


async def gather_isolated(
    branches: Dict[K, Awaitable[V]],
    fallback: Callable[[K, BaseException], V],
) -> Dict[K, V]:
    """
    Await every branch concurrently and return results keyed like the input.

    A branch that raises is replaced by ``fallback(key, error)``; siblings keep
    running and the join always waits for all of them. Cancellation of the
    caller is not swallowed.
    """
    keys = list(branches)
    outcomes = await asyncio.gather(*(branches[k] for k in keys), return_exceptions=True)

    results: Dict[K, V] = {}
    for key, outcome in zip(keys, outcomes):
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            logger.warning(
                "Branch failed, using fallback",
                extra={"branch": str(key), "error": str(outcome), "error_type": type(outcome).__name__},
            )
            results[key] = fallback(key, outcome)
        else:
            results[key] = outcome
    return results
