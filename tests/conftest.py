import asyncio
import time

import pytest

from api.schemas import BloodPressure, VitalsRecord


class ManualClock:
    """
    Monotonic clock + sleep pair for the recorder tick.

    Each `sleep()` blocks until the test releases a tick, then advances the
    clock by the requested amount.
    """

    def __init__(self):
        self.now = 0.0
        self._ticks = asyncio.Queue()

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        await self._ticks.get()
        self.now += seconds

    def release(self, ticks: int = 1) -> None:
        for _ in range(ticks):
            self._ticks.put_nowait(None)


@pytest.fixture
def manual_clock():
    return ManualClock()


@pytest.fixture
def wait_until():
    async def _wait(predicate, timeout: float = 2.0):
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.001)
    return _wait


@pytest.fixture
def vitals() -> VitalsRecord:
    return VitalsRecord(
        heart_rate_bpm=72.3,
        hrv_ms=48.6,
        blood_pressure=BloodPressure(systolic=118.4, diastolic=77.5),
        stress_index=22.0,
    )
