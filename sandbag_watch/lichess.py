"""
Lichess API client.

This module provides:
- Arena, Player and User records decoded from Lichess JSON
- Tournament catalog fetching and rating-capped arena filtering
- Lazy streaming of a tournament's leaderboard (ndjson)
- Batch user lookup
- Recent rated game history for one player and performance category

API docs: https://lichess.org/api
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional

import requests

from .games import GameResult, parse_games
from .transport import (
    DEFAULT_BACKOFF,
    BackoffPolicy,
    BearerToken,
    RequestTimeout,
    RetriesExhausted,
    perform,
)

logger = logging.getLogger(__name__)

LICHESS_ROOT = "https://lichess.org"

GAMES_MAX = 100
GAMES_DAYS_BACK = 180
GAMES_TIMEOUT = 60.0
USERS_PER_REQUEST = 300

NEW_ACCOUNT_DAYS = 20
VERY_NEW_ACCOUNT_DAYS = 10


class DecodeError(ValueError):
    """A Lichess payload did not have the expected shape."""


def _require(data: dict, key: str):
    try:
        return data[key]
    except (KeyError, TypeError):
        raise DecodeError(f"missing field {key!r} in {data!r}") from None


def _as_int(value, key: str) -> int:
    # bool is an int subclass but never a valid count or rating
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"field {key!r} is not an integer: {value!r}")
    return value


# =============================================================================
# Data Structures
# =============================================================================

@dataclass(frozen=True)
class Schedule:
    """Recurring schedule of an official arena, e.g. hourly superBlitz."""
    freq: str
    speed: str


@dataclass(frozen=True)
class Arena:
    """One tournament from the catalog."""
    id: str
    has_max_rating: bool
    schedule: Optional[Schedule]
    perf_key: str
    full_name: str

    @classmethod
    def from_json(cls, data: dict) -> "Arena":
        schedule_data = data.get("schedule") if isinstance(data, dict) else None
        schedule = None
        if schedule_data:
            schedule = Schedule(
                freq=_require(schedule_data, "freq"),
                speed=_require(schedule_data, "speed"),
            )
        return cls(
            id=_require(data, "id"),
            has_max_rating=bool(data.get("hasMaxRating", False)),
            schedule=schedule,
            perf_key=_require(_require(data, "perf"), "key"),
            full_name=str(_require(data, "fullName")),
        )

    @property
    def speed(self) -> Optional[str]:
        """Speed category the score thresholds are keyed by."""
        return self.schedule.speed if self.schedule else None

    def rating_limit(self) -> Optional[int]:
        """
        Rating ceiling of a capped arena, read from its name.

        Names look like "≤1500 Blitz Arena": the four characters after the
        leading symbol hold the ceiling. Returns None when the arena has no
        ceiling or the name does not parse.
        """
        if not self.has_max_rating:
            return None
        digits = self.full_name[1:5]
        if len(digits) != 4 or not (digits.isascii() and digits.isdigit()):
            return None
        return int(digits)


@dataclass(frozen=True)
class ArenaCatalog:
    created: list
    finished: list

    @classmethod
    def from_json(cls, data: dict) -> "ArenaCatalog":
        return cls(
            created=[Arena.from_json(a) for a in _require(data, "created")],
            finished=[Arena.from_json(a) for a in _require(data, "finished")],
        )


@dataclass(frozen=True)
class Player:
    """One leaderboard line, e.g. {"rank":2,"score":57,"rating":2611,"username":"x","performance":2462}."""
    rank: int
    score: int
    rating: int
    username: str
    performance: Optional[int] = None

    @classmethod
    def from_json(cls, data: dict) -> "Player":
        if not isinstance(data, dict):
            raise DecodeError(f"player record is not an object: {data!r}")
        username = _require(data, "username")
        if not isinstance(username, str):
            raise DecodeError(f"field 'username' is not a string: {username!r}")
        performance = data.get("performance")
        return cls(
            rank=_as_int(_require(data, "rank"), "rank"),
            score=_as_int(_require(data, "score"), "score"),
            rating=_as_int(_require(data, "rating"), "rating"),
            username=username,
            performance=_as_int(performance, "performance") if performance is not None else None,
        )


@dataclass(frozen=True)
class User:
    """Account facts used by the age checks."""
    id: str
    tos_violation: bool
    created_at: datetime

    @classmethod
    def from_json(cls, data: dict) -> "User":
        created_ms = _require(data, "createdAt")
        return cls(
            id=_require(data, "id"),
            tos_violation=bool(data.get("tosViolation", False)),
            created_at=datetime.fromtimestamp(_as_int(created_ms, "createdAt") / 1000, tz=timezone.utc),
        )

    def age(self, now: Optional[datetime] = None) -> timedelta:
        now = now or datetime.now(timezone.utc)
        return now - self.created_at

    def is_new(self, now: Optional[datetime] = None) -> bool:
        return self.age(now) < timedelta(days=NEW_ACCOUNT_DAYS)

    def is_very_new(self, now: Optional[datetime] = None) -> bool:
        return self.age(now) < timedelta(days=VERY_NEW_ACCOUNT_DAYS)


# =============================================================================
# Client
# =============================================================================

class LichessClient:
    """Read-only Lichess API access over the retrying request layer."""

    def __init__(
        self,
        session: requests.Session,
        token: Optional[str] = None,
        root: str = LICHESS_ROOT,
        policy: BackoffPolicy = DEFAULT_BACKOFF,
    ):
        self.session = session
        self.credential = BearerToken(token) if token else None
        self.root = root.rstrip("/")
        self.policy = policy

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        return perform(
            self.session,
            method,
            f"{self.root}{path}",
            credential=self.credential,
            policy=self.policy,
            **kwargs,
        )

    def get_arenas(self) -> ArenaCatalog:
        """Fetch the tournament catalog (created and finished arenas)."""
        response = self._request("GET", "/api/tournament")
        return ArenaCatalog.from_json(response.json())

    def eligible_arenas(self) -> list[Arena]:
        """Finished arenas with a rating ceiling, the only ones worth scanning."""
        return [a for a in self.get_arenas().finished if a.has_max_rating]

    def iter_players(self, arena: Arena) -> Iterator[Player]:
        """
        Stream the final leaderboard of an arena.

        The results feed is newline-delimited JSON and can be large, so lines
        are decoded one at a time as they arrive. Undecodable lines are logged
        and skipped; read errors propagate.
        """
        response = self._request(
            "GET",
            f"/api/tournament/{arena.id}/results",
            headers={"Accept": "application/x-ndjson"},
            stream=True,
        )
        with response:
            for line in response.iter_lines(decode_unicode=True):
                if not line:
                    continue
                try:
                    yield Player.from_json(json.loads(line))
                except ValueError as e:
                    logger.warning("Skipping leaderboard line of %s: %s", arena.id, e)

    def get_users_info(self, user_ids: list[str]) -> dict[str, User]:
        """
        Look up accounts by id (lowercase username).

        Only the first 300 ids are sent, the API limit for one call.
        """
        ids = [u.lower() for u in user_ids[:USERS_PER_REQUEST]]
        if not ids:
            return {}
        response = self._request("POST", "/api/users", body=",".join(ids))
        payload = response.json()
        if not isinstance(payload, list):
            raise DecodeError(f"expected a list of users, got {payload!r}")
        users = [User.from_json(u) for u in payload]
        return {u.id: u for u in users}

    def get_user(self, username: str) -> Optional[User]:
        return self.get_users_info([username]).get(username.lower())

    def fetch_user_games_pgn(
        self,
        username: str,
        perf_key: str,
        now: Optional[datetime] = None,
        timeout: float = GAMES_TIMEOUT,
    ) -> str:
        """Export up to 100 recent rated, finished games as PGN."""
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(days=GAMES_DAYS_BACK)
        params = {
            "max": GAMES_MAX,
            "rated": "true",
            "perfType": perf_key,
            "ongoing": "false",
            "finished": "true",
            "since": int(since.timestamp() * 1000),
        }
        response = self._request(
            "GET",
            f"/api/games/user/{username}",
            params=params,
            headers={"Accept": "application/x-chess-pgn"},
            timeout=timeout,
        )
        return response.text

    def get_user_games(
        self,
        username: str,
        perf_key: str,
        now: Optional[datetime] = None,
        timeout: float = GAMES_TIMEOUT,
    ) -> list[GameResult]:
        """
        Recent game outcomes of a player, or [] if they cannot be fetched in time.
        """
        try:
            pgn_text = self.fetch_user_games_pgn(username, perf_key, now=now, timeout=timeout)
        except (RequestTimeout, RetriesExhausted, requests.RequestException) as e:
            logger.warning("No games for %s (%s): %s", username, perf_key, e)
            return []
        return parse_games(pgn_text, username)
