"""Call-and-wait polling with a deadline, and per-entity loop coalescing."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, TypeVar

from offramp.core.errors import PollTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]
Clock = Callable[[], float]


async def poll(
    fetch: Callable[[], Awaitable[T]],
    is_terminal: Callable[[T], bool],
    interval: float,
    timeout: float,
    *,
    key: str = "poll",
    sleep: Sleep = asyncio.sleep,
    clock: Clock = time.monotonic
) -> T:
    """
    Call ``fetch`` until ``is_terminal`` accepts its result.

    ``fetch`` runs at least once. Sleeping happens only between attempts, so
    the call returns or raises within ``timeout`` plus one ``interval`` plus one
    ``fetch`` latency. Errors raised by ``fetch`` propagate immediately.

    Args:
        fetch: Coroutine function returning the current value
        is_terminal: Predicate that ends polling
        interval: Seconds between attempts
        timeout: Seconds after which a non-terminal result raises
        key: Label for logs and the timeout error

    Returns:
        The first terminal value

    Raises:
        PollTimeout: Deadline passed; carries the last non-terminal value
    """
    deadline = clock() + timeout
    attempts = 0

    while True:
        result = await fetch()
        attempts += 1

        if is_terminal(result):
            logger.debug(f"Polling {key} finished after {attempts} attempt(s)")
            return result

        if clock() >= deadline:
            logger.warning(f"Polling {key} timed out after {attempts} attempt(s) ({timeout:g}s)")
            raise PollTimeout(key, timeout, last_result=result, attempts=attempts)

        await sleep(interval)


class PollRegistry:
    """
    At most one polling loop per (provider, identifier).

    A second caller asking to poll an entity that already has a loop in flight
    joins that loop and receives the same result or error instead of starting
    a duplicate.
    """

    def __init__(self, sleep: Sleep = asyncio.sleep, clock: Clock = time.monotonic):
        self._sleep = sleep
        self._clock = clock
        self._active: Dict[Hashable, asyncio.Future] = {}

    def is_active(self, provider: str, identifier: str) -> bool:
        return (provider, identifier) in self._active

    async def poll(
        self,
        provider: str,
        identifier: str,
        fetch: Callable[[], Awaitable[T]],
        is_terminal: Callable[[T], bool],
        interval: float,
        timeout: float
    ) -> T:
        entity = (provider, identifier)
        existing: Optional[asyncio.Future] = self._active.get(entity)
        if existing is not None:
            logger.info(f"Joining in-flight poll for {provider}:{identifier}")
            return await asyncio.shield(existing)

        task = asyncio.ensure_future(poll(
            fetch,
            is_terminal,
            interval,
            timeout,
            key=f"{provider}:{identifier}",
            sleep=self._sleep,
            clock=self._clock,
        ))
        self._active[entity] = task
        task.add_done_callback(lambda _: self._active.pop(entity, None))
        # Retrieve the exception for joiners that already went away
        task.add_done_callback(lambda t: t.cancelled() or t.exception())
        return await asyncio.shield(task)
