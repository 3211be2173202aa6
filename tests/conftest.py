"""Shared fixtures for SceneGate tests."""

import pytest

from scenegate.app.services.admission import (
    AdmissionController,
    GlobalBucketStore,
    QuotaLimits,
)

START_TIME = 1_760_000_000


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = START_TIME):
        self.start = int(now)
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limits():
    return QuotaLimits(
        user_per_minute=10,
        user_per_day=40,
        global_per_minute=1000,
        global_per_day=100000,
    )


@pytest.fixture
def global_store(tmp_path, clock):
    return GlobalBucketStore(
        tmp_path / "buckets",
        lock_timeout=0.2,
        retry_interval=0.01,
        clock=clock,
    )


@pytest.fixture
def controller(global_store, limits, clock):
    return AdmissionController(
        global_store=global_store,
        limits_provider=lambda: limits,
        clock=clock,
    )
