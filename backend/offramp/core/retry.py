"""Exponential backoff for provider calls that are safe to repeat."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from offramp.core.errors import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(error: BaseException) -> bool:
    """Rate limits, provider 5xx and transport failures are worth repeating."""
    return isinstance(error, ProviderError) and error.transient


async def with_retry(
    op: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    *,
    should_retry: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    label: Optional[str] = None
) -> T:
    """
    Run ``op`` up to ``max_attempts`` times.

    The wait before retry ``n`` (0-based) is ``base_delay * 2**n``. Errors that
    ``should_retry`` rejects propagate at once; after the last attempt the
    final error is re-raised unchanged.

    Never wrap the settlement transfer with this: repeating it can pay twice.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(max_attempts):
        try:
            return await op()
        except Exception as e:
            if attempt == max_attempts - 1 or not should_retry(e):
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning(
                f"{label or 'operation'} failed (attempt {attempt + 1}/{max_attempts}): {e}; "
                f"retrying in {delay:g}s"
            )
            await sleep(delay)

    raise AssertionError("unreachable")
