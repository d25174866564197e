import pytest
from fastapi.testclient import TestClient

import main
from rate_limit import MemoryCounterStore


class FakeClock:
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
def store(clock):
    return MemoryCounterStore(clock=clock)


@pytest.fixture
def client(store):
    """A fresh app per test, counters driven by the fake clock."""
    return TestClient(main.create_app(store=store))
