"""
Pytest configuration for sandbag_watch tests.

No test touches the network: HTTP goes through helpers.FakeSession.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from sandbag_watch.lichess import Arena, Player, Schedule

from helpers import RecordingSleep


@pytest.fixture
def sleeps() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def rapid_arena() -> Arena:
    """Finished rating-capped rapid arena."""
    return Arena(
        id="rapid18",
        has_max_rating=True,
        schedule=Schedule(freq="hourly", speed="rapid"),
        perf_key="rapid",
        full_name="≤1800 Rapid Arena",
    )


@pytest.fixture
def blitz_arena() -> Arena:
    return Arena(
        id="blitz15",
        has_max_rating=True,
        schedule=Schedule(freq="hourly", speed="blitz"),
        perf_key="blitz",
        full_name="≤1500 Blitz Arena",
    )


@pytest.fixture
def make_player():
    def _make(score: int = 0, rating: int = 1500, performance=None, username: str = "Sandbagger", rank: int = 1):
        return Player(rank=rank, score=score, rating=rating, username=username, performance=performance)
    return _make
