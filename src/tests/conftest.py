"""
Shared test fixtures for pytest
"""

import random
from datetime import datetime, timedelta, timezone

import pytest

from core import RewardBatchManager
from models import LevelTable, RewardBatch, RewardEntry
from services import InMemoryStore, MockServerService, SessionManager, setup_logging
from services.event_bus import EventBus


class ManualClock:
    """UTC clock that only moves when a test advances it"""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float):
        self.current += timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def setup_test_logging():
    """Setup logging for all tests (console only)"""
    setup_logging({"file_output": False})


@pytest.fixture
def bus():
    """Isolated EventBus so tests never see each other's notifications"""
    return EventBus()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def levels():
    return LevelTable.default()


@pytest.fixture
def make_server(store, clock, bus):
    """Factory for a zero-latency, failure-free server sharing the test store/clock/bus"""

    def _make(**kwargs):
        params = {
            "min_latency_ms": 0,
            "max_latency_ms": 0,
            "error_rate": 0.0,
            "rng": random.Random(1234),
            "clock": clock,
            "bus": bus,
        }
        params.update(kwargs)
        preferences = params.pop("preferences", store)
        return MockServerService(preferences, **params)

    return _make


@pytest.fixture
def server(make_server):
    return make_server()


@pytest.fixture
def session_manager(server, store, clock, bus):
    return SessionManager(server, store, clock=clock, bus=bus)


@pytest.fixture
def pipeline(server, bus):
    """Reward pipeline with a short poll interval and no retry delay"""
    return RewardBatchManager(
        server,
        batch_size=10,
        batch_timeout_seconds=3.0,
        retry_interval_seconds=1.0,
        max_retries=3,
        flush_poll_interval=0.001,
        bus=bus,
    )


@pytest.fixture
def make_entry():
    """Build a RewardEntry with the default 13-bucket level 0 reward"""

    def _make(ball_index, bucket_index=6, reward=None, level=0, drop_x=0.0, total_bucket_count=13):
        if reward is None:
            reward = LevelTable.default().get(level).expected_reward(bucket_index, total_bucket_count)
        return RewardEntry(
            ball_index=ball_index,
            bucket_index=bucket_index,
            total_bucket_count=total_bucket_count,
            reward_amount=reward,
            level=level,
            drop_position_x=drop_x,
        )

    return _make


@pytest.fixture
def make_batch(make_entry):
    """Build a RewardBatch for a player/session from (bucket, reward) pairs or entries"""

    def _make(player_id, session_id, entries, start_index=0):
        batch = RewardBatch(player_id=player_id, session_id=session_id, game_seed="seed")
        for offset, item in enumerate(entries):
            if isinstance(item, RewardEntry):
                batch.add_entry(item)
            else:
                bucket_index, reward = item
                batch.add_entry(make_entry(start_index + offset, bucket_index, reward))
        return batch

    return _make
