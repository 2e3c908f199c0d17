from datetime import datetime, timedelta, timezone

import pytest

from linkdrop.config import AppConfig
from linkdrop.store import FeedStore

PRIVATE_TOKEN = "TestTestTestTestTestTestTest1234"
FEED_TOKEN = "FeedFeedFeedFeedFeedFeedFeedFeed"


class TickingClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self):
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def feed_path(tmp_path):
    return tmp_path / "feed.xml"


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def store(feed_path, clock):
    return FeedStore.load(feed_path, clock=clock)


@pytest.fixture
def app_config(feed_path):
    return AppConfig(
        feed_path=feed_path,
        private_token=PRIVATE_TOKEN,
        feed_token=FEED_TOKEN,
    )
