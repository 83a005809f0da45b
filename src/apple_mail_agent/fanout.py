"""Concurrent fan-out that never leaves siblings running unobserved."""

import asyncio
import logging
from typing import Awaitable, Iterable, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def gather_settled(awaitables: Iterable[Awaitable[T]]) -> List[T]:
    """
    Run awaitables concurrently and wait for every one of them to finish.

    Results keep input order. If any raised, the first exception (in input
    order) is re-raised once all siblings are done, so none is still
    holding a bridge slot when the caller sees the failure.
    """
    results = await asyncio.gather(*awaitables, return_exceptions=True)
    errors = [result for result in results if isinstance(result, BaseException)]
    if errors:
        if len(errors) > 1:
            logger.debug(f"{len(errors)} concurrent calls failed; raising the first")
        raise errors[0]
    return list(results)
