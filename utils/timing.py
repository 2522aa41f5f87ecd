"""
utils/timing.py — Bounded awaits for external calls
====================================================
`race()` is a first-to-settle-wins combinator: whichever awaitable finishes
first (with a value *or* an exception) decides the outcome.  The losers are
not cancelled; they keep running in the background and whatever they
eventually produce is consumed and dropped.

`with_deadline()` races a call against a timer and raises `DeadlineExceeded`
when the timer settles first.
"""

import asyncio
from typing import Any, Awaitable

from utils.logger import get_logger

logger = get_logger("utils.timing")


class DeadlineExceeded(Exception):
    """The bounded call did not settle before its deadline."""

    def __init__(self, seconds: float):
        super().__init__(f"Deadline of {seconds:.3f}s exceeded")
        self.seconds = seconds


def _discard(task: asyncio.Future) -> None:
    # Retrieve the outcome so asyncio never warns about an unobserved exception.
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned call finished with %r (ignored).", exc)


async def race(*aws: Awaitable[Any]) -> Any:
    """
    Return the outcome of the first awaitable to settle.

    If several settle in the same loop iteration the earliest argument wins.
    """
    if not aws:
        raise ValueError("race() needs at least one awaitable")

    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        for task in tasks:
            task.add_done_callback(_discard)
        raise

    winner = next(task for task in tasks if task in done)
    for task in tasks:
        if task is not winner:
            task.add_done_callback(_discard)
    return winner.result()


async def _timer(seconds: float) -> None:
    await asyncio.sleep(seconds)
    raise DeadlineExceeded(seconds)


async def with_deadline(aw: Awaitable[Any], seconds: float) -> Any:
    """
    Await `aw` for at most `seconds`.

    Raises DeadlineExceeded if the timer wins; `aw` is left running and its
    eventual result is ignored.
    """
    timer = asyncio.ensure_future(_timer(seconds))
    try:
        return await race(aw, timer)
    finally:
        # Only our own timer is cancelled; the bounded call is abandoned as-is.
        if not timer.done():
            timer.cancel()
