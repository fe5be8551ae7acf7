"""Pytest configuration and shared fixtures."""

import pytest
import pytest_asyncio

from db.database import Database
from models import RoundOutcome, RoundRecord, Target


@pytest_asyncio.fixture
async def db():
    """Create an in-memory database for testing."""
    database = Database(":memory:")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def clock():
    """A manually advanced millisecond clock."""

    class FakeClock:
        def __init__(self):
            self.now = 0.0

        def __call__(self) -> float:
            return self.now

        def advance(self, ms: float) -> float:
            self.now += ms
            return self.now

    return FakeClock()


@pytest.fixture
def target():
    """A 1000x800 image with a 20px target at (100, 100)."""
    return Target(image_id="img1", cx=100, cy=100, radius=20, width=1000, height=800)


@pytest.fixture
def make_record():
    """Build a round record with sensible defaults."""

    def _make(**overrides) -> RoundRecord:
        fields = {
            "image_id": "img1",
            "player_id": "player1",
            "raw_duration_ms": 60000,
            "used_duration_ms": 60000,
            "miss_count": 0,
            "outcome": RoundOutcome.SUCCESS,
            "rated": False,
        }
        fields.update(overrides)
        return RoundRecord(**fields)

    return _make
