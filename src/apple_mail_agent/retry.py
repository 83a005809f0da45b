"""Bounded retry for bridge reads that settle eventually."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    value: Optional[T]
    accepted: bool
    attempts: int
    last_error: Optional[BaseException] = None


async def retry_until(
    operation: Callable[[], Awaitable[T]],
    accept: Callable[[T], bool],
    attempts: int = 3,
    delay: float = 0.5,
    backoff: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    label: str = "operation",
) -> RetryOutcome[T]:
    """
    Call ``operation`` until ``accept`` approves its result.

    Args:
        operation: Zero-argument coroutine factory to call on each attempt
        accept: Predicate deciding whether the observed value is good enough
        attempts: Maximum number of calls (at least one)
        delay: Seconds to wait before the second attempt
        backoff: Multiplier applied to the delay after each attempt
        retry_on: Exceptions treated as a failed attempt; others propagate
        label: Name used in log messages

    Returns:
        RetryOutcome with the last observed value. ``accepted`` is False when
        the attempts ran out, which callers decide how to treat.
    """
    attempts = max(1, attempts)
    value: Optional[T] = None
    last_error: Optional[BaseException] = None
    wait = delay

    for attempt in range(1, attempts + 1):
        try:
            value = await operation()
            last_error = None
            if accept(value):
                if attempt > 1:
                    logger.info(f"{label} succeeded on attempt {attempt}/{attempts}")
                return RetryOutcome(value=value, accepted=True, attempts=attempt)
            logger.debug(f"{label} attempt {attempt}/{attempts} not accepted yet")
        except retry_on as e:
            last_error = e
            logger.debug(f"{label} attempt {attempt}/{attempts} failed: {e}")

        if attempt < attempts:
            await asyncio.sleep(wait)
            wait *= backoff

    logger.warning(f"{label} gave up after {attempts} attempt(s)")
    return RetryOutcome(value=value, accepted=False, attempts=attempts, last_error=last_error)
