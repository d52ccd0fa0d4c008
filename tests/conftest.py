import time

import pytest

from expiring_cache import ExpiringCache


class FakeClock:
    """Manually advanced stand-in for `time.monotonic`."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    # real sweep period is 5s, longer than any test using this fixture
    c = ExpiringCache(5, clock=clock, name="test")
    yield c
    c.shutdown()


@pytest.fixture
def wait_for():
    def _wait_for(predicate, timeout: float = 2.0, step: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(step)
        return predicate()

    return _wait_for
