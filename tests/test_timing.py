import asyncio

import pytest

from utils.timing import DeadlineExceeded, race, with_deadline


async def _after(seconds, value=None, exc=None):
    await asyncio.sleep(seconds)
    if exc is not None:
        raise exc
    return value


@pytest.mark.asyncio
async def test_race_returns_first_settled_value():
    assert await race(_after(0.2, "slow"), _after(0.01, "fast")) == "fast"


@pytest.mark.asyncio
async def test_race_propagates_first_settled_exception():
    with pytest.raises(KeyError):
        await race(_after(0.2, "slow"), _after(0.01, exc=KeyError("boom")))


@pytest.mark.asyncio
async def test_race_requires_an_awaitable():
    with pytest.raises(ValueError):
        await race()


@pytest.mark.asyncio
async def test_with_deadline_returns_value_in_time():
    assert await with_deadline(_after(0.01, 42), 1.0) == 42


@pytest.mark.asyncio
async def test_with_deadline_abandons_late_call_without_cancelling_it():
    finished = asyncio.Event()

    async def late_call():
        await asyncio.sleep(0.1)
        finished.set()
        return "late"

    with pytest.raises(DeadlineExceeded) as info:
        await with_deadline(late_call(), 0.01)
    assert info.value.seconds == pytest.approx(0.01)

    # The loser keeps running to completion; its value is simply ignored.
    await asyncio.wait_for(finished.wait(), timeout=1.0)


@pytest.mark.asyncio
async def test_with_deadline_discards_late_failure_quietly():
    with pytest.raises(DeadlineExceeded):
        await with_deadline(_after(0.05, exc=RuntimeError("ignored")), 0.01)
    await asyncio.sleep(0.1)
