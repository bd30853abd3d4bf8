"""Tests for provider retry backoff."""

import pytest

from offramp.core.errors import ProviderError
from offramp.core.retry import is_transient, with_retry


class Recorder:
    def __init__(self):
        self.delays = []

    async def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)


def failing(*outcomes):
    """Operation raising each error in ``outcomes`` in turn, then returning."""
    state = {"calls": 0}

    async def op():
        index = state["calls"]
        state["calls"] += 1
        if index < len(outcomes):
            raise outcomes[index]
        return "ok"

    return op, state


async def test_backoff_doubles_between_attempts():
    recorder = Recorder()
    op, state = failing(ProviderError("paycrest", 503), ProviderError("paycrest", None))

    assert await with_retry(op, max_attempts=3, base_delay=1.0, sleep=recorder.sleep) == "ok"

    assert state["calls"] == 3
    assert recorder.delays == [1.0, 2.0]


async def test_non_transient_error_is_not_repeated():
    recorder = Recorder()
    op, state = failing(ProviderError("paycrest", 404))

    with pytest.raises(ProviderError) as exc_info:
        await with_retry(op, sleep=recorder.sleep)

    assert exc_info.value.status_code == 404
    assert state["calls"] == 1
    assert recorder.delays == []


async def test_final_error_is_reraised_unchanged():
    recorder = Recorder()
    errors = [ProviderError("layerswap", 429), ProviderError("layerswap", 502), ProviderError("layerswap", 503)]
    op, state = failing(*errors)

    with pytest.raises(ProviderError) as exc_info:
        await with_retry(op, max_attempts=3, base_delay=0.5, sleep=recorder.sleep)

    assert exc_info.value is errors[-1]
    assert recorder.delays == [0.5, 1.0]


async def test_custom_retry_predicate():
    recorder = Recorder()
    op, state = failing(ConnectionError("reset"))

    result = await with_retry(
        op,
        should_retry=lambda e: isinstance(e, ConnectionError),
        sleep=recorder.sleep,
    )

    assert result == "ok"
    assert state["calls"] == 2


async def test_rejects_zero_attempts():
    op, _ = failing()

    with pytest.raises(ValueError):
        await with_retry(op, max_attempts=0)


@pytest.mark.parametrize("error,expected", [
    (ProviderError("avnu", None), True),
    (ProviderError("avnu", 429), True),
    (ProviderError("avnu", 500), True),
    (ProviderError("avnu", 400), False),
    (ProviderError("avnu", 401), False),
    (RuntimeError("boom"), False),
])
def test_is_transient(error, expected):
    assert is_transient(error) is expected
