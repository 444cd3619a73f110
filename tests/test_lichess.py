"""
Tests for the Lichess client and records.

Tests verify that:
1. Arena, Player and User decode from Lichess JSON
2. The rating ceiling is read from the arena name without ever raising
3. Only finished arenas with a rating ceiling are eligible
4. The leaderboard is streamed lazily, skipping bad lines
5. User lookups and game history requests are shaped correctly
6. A failing game history fetch degrades to no games

Run with: pytest tests/test_lichess.py -v
"""

import json
import logging
import time
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from sandbag_watch.lichess import (
    Arena,
    ArenaCatalog,
    DecodeError,
    LichessClient,
    Player,
    User,
)
from sandbag_watch.transport import BackoffPolicy

from helpers import BrokenStreamResponse, FakeSession, StreamedResponse, make_response, queued, routed

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def arena_json(id="abc", has_max_rating=True, name="≤1500 Blitz Arena", speed="blitz", perf="blitz"):
    data = {
        "id": id,
        "fullName": name,
        "schedule": {"freq": "hourly", "speed": speed},
        "perf": {"key": perf, "name": perf.title()},
        "nbPlayers": 120,
    }
    if has_max_rating is not None:
        data["hasMaxRating"] = has_max_rating
    return data


def client_for(handler) -> tuple[LichessClient, FakeSession]:
    session = FakeSession(handler)
    return LichessClient(session, policy=BackoffPolicy(max_attempts=1)), session


# =============================================================================
# Records
# =============================================================================

class TestArena:

    def test_from_json(self):
        arena = Arena.from_json(arena_json())
        assert arena.id == "abc"
        assert arena.has_max_rating is True
        assert arena.speed == "blitz"
        assert arena.perf_key == "blitz"
        assert arena.full_name == "≤1500 Blitz Arena"

    def test_has_max_rating_defaults_false(self):
        assert Arena.from_json(arena_json(has_max_rating=None)).has_max_rating is False

    def test_without_schedule(self):
        data = arena_json()
        del data["schedule"]
        arena = Arena.from_json(data)
        assert arena.schedule is None
        assert arena.speed is None

    def test_missing_perf_raises(self):
        data = arena_json()
        del data["perf"]
        with pytest.raises(DecodeError):
            Arena.from_json(data)


class TestRatingLimit:

    def test_capped_arena(self):
        assert Arena.from_json(arena_json(name="≤1500 Blitz Arena")).rating_limit() == 1500

    def test_uncapped_arena(self):
        assert Arena.from_json(arena_json(has_max_rating=False, name="≤1500 Blitz Arena")).rating_limit() is None

    def test_ascii_lead_character(self):
        assert Arena.from_json(arena_json(name="<2000 Rapid Arena")).rating_limit() == 2000

    @pytest.mark.parametrize("name", ["", "≤", "≤15", "≤15a0 Blitz", "Hourly Blitz Arena", "≤ 150 Blitz", "≤-150 Blitz"])
    def test_unparsable_name(self, name):
        assert Arena.from_json(arena_json(name=name)).rating_limit() is None

    def test_non_ascii_digits_rejected(self):
        assert Arena.from_json(arena_json(name="≤١٥٠٠ Blitz")).rating_limit() is None


class TestPlayer:

    def test_from_json(self):
        player = Player.from_json({"rank": 2, "score": 57, "rating": 2611, "username": "xxx", "performance": 2462})
        assert player == Player(rank=2, score=57, rating=2611, username="xxx", performance=2462)

    def test_performance_optional(self):
        player = Player.from_json({"rank": 1, "score": 3, "rating": 1500, "username": "yyy"})
        assert player.performance is None

    @pytest.mark.parametrize("data", [
        {"rank": 1, "score": 3, "rating": 1500},
        {"rank": 1, "score": "3", "rating": 1500, "username": "x"},
        {"rank": 1, "score": 3, "rating": True, "username": "x"},
        [1, 2, 3],
    ])
    def test_invalid(self, data):
        with pytest.raises(DecodeError):
            Player.from_json(data)


class TestUser:

    def user(self, days_old: float) -> User:
        created = NOW - timedelta(days=days_old)
        return User.from_json({"id": "x", "createdAt": int(created.timestamp() * 1000)})

    def test_from_json(self):
        user = User.from_json({"id": "x", "tosViolation": True, "createdAt": 1700000000000})
        assert user.tos_violation is True
        assert user.created_at == datetime.fromtimestamp(1700000000, tz=timezone.utc)

    def test_tos_violation_defaults_false(self):
        assert self.user(100).tos_violation is False

    @pytest.mark.parametrize("days, is_new, is_very_new", [
        (5, True, True),
        (15, True, False),
        (25, False, False),
    ])
    def test_age_predicates(self, days, is_new, is_very_new):
        user = self.user(days)
        assert user.is_new(NOW) is is_new
        assert user.is_very_new(NOW) is is_very_new


# =============================================================================
# Client
# =============================================================================

class TestArenas:

    def test_catalog(self):
        payload = {"created": [arena_json(id="new")], "started": [], "finished": [arena_json(id="old")]}
        client, session = client_for(queued(make_response(200, json.dumps(payload))))
        catalog = client.get_arenas()
        assert isinstance(catalog, ArenaCatalog)
        assert [a.id for a in catalog.created] == ["new"]
        assert [a.id for a in catalog.finished] == ["old"]
        assert session.calls[0][1] == "https://lichess.org/api/tournament"

    def test_only_capped_finished_arenas_are_eligible(self):
        payload = {
            "created": [arena_json(id="created", has_max_rating=True)],
            "finished": [
                arena_json(id="capped", has_max_rating=True),
                arena_json(id="open", has_max_rating=False),
                arena_json(id="unflagged", has_max_rating=None),
            ],
        }
        client, _ = client_for(queued(make_response(200, json.dumps(payload))))
        assert [a.id for a in client.eligible_arenas()] == ["capped"]

    def test_bad_catalog_raises(self):
        client, _ = client_for(queued(make_response(200, b"not json")))
        with pytest.raises(ValueError):
            client.get_arenas()

    def test_token_sent(self):
        session = FakeSession(queued(make_response(200, '{"created": [], "finished": []}')))
        LichessClient(session, token="lip_abc").get_arenas()
        assert session.calls[0][2]["headers"]["Authorization"] == "Bearer lip_abc"


class TestLeaderboard:

    def test_streams_players_skipping_bad_lines(self, blitz_arena, caplog):
        lines = "\n".join([
            json.dumps({"rank": 1, "score": 50, "rating": 1450, "username": "a"}),
            "",
            "{not json",
            json.dumps({"rank": 2, "score": 40}),
            json.dumps({"rank": 3, "score": 30, "rating": 1400, "username": "c", "performance": 1900}),
        ])
        client, session = client_for(queued(make_response(200, lines)))
        with caplog.at_level(logging.WARNING, logger="sandbag_watch.lichess"):
            players = list(client.iter_players(blitz_arena))
        assert [p.username for p in players] == ["a", "c"]
        assert players[1].performance == 1900
        assert session.calls[0][1] == "https://lichess.org/api/tournament/blitz15/results"
        assert session.calls[0][2]["stream"] is True
        assert caplog.text.count("Skipping leaderboard line") == 2

    def test_is_lazy(self, blitz_arena):
        client, session = client_for(queued(make_response(200, b"")))
        players = client.iter_players(blitz_arena)
        assert session.calls == []
        assert list(players) == []
        assert len(session.calls) == 1

    def test_read_error_propagates(self, blitz_arena):
        line = json.dumps({"rank": 1, "score": 50, "rating": 1450, "username": "a"})
        response = BrokenStreamResponse([line], requests.exceptions.ChunkedEncodingError("cut"))
        client, _ = client_for(queued(response))
        players = client.iter_players(blitz_arena)
        assert next(players).username == "a"
        with pytest.raises(requests.exceptions.ChunkedEncodingError):
            next(players)
        assert response.closed


class TestUsers:

    def test_batch_lookup(self):
        payload = [{"id": "alice", "createdAt": 1700000000000}, {"id": "bob", "createdAt": 1600000000000, "tosViolation": True}]
        client, session = client_for(queued(make_response(200, json.dumps(payload))))
        users = client.get_users_info(["Alice", "bob"])
        method, url, kwargs = session.calls[0]
        assert method == "POST"
        assert url == "https://lichess.org/api/users"
        assert kwargs["data"] == "alice,bob"
        assert set(users) == {"alice", "bob"}
        assert users["bob"].tos_violation is True

    def test_at_most_300_ids(self):
        client, session = client_for(queued(make_response(200, "[]")))
        client.get_users_info([f"user{i}" for i in range(350)])
        assert len(session.calls[0][2]["data"].split(",")) == 300

    def test_no_ids_no_request(self):
        client, session = client_for(queued())
        assert client.get_users_info([]) == {}
        assert session.calls == []

    def test_get_user_by_username(self):
        client, _ = client_for(queued(make_response(200, '[{"id": "alice", "createdAt": 1700000000000}]')))
        assert client.get_user("Alice").id == "alice"

    def test_unknown_user(self):
        client, _ = client_for(queued(make_response(200, "[]")))
        assert client.get_user("ghost") is None

    def test_bad_payload_raises(self):
        client, _ = client_for(queued(make_response(200, '{"id": "alice"}')))
        with pytest.raises(DecodeError):
            client.get_users_info(["alice"])


class TestUserGames:

    PGN = (
        '[Site "https://lichess.org/short001"]\n[White "Sandbagger"]\n[Black "x"]\n[Result "0-1"]\n\n'
        "1. f3 e5 2. g4 Qh4# 0-1\n\n"
    )

    def test_request_parameters(self):
        client, session = client_for(routed({"/api/games/user/": make_response(200, self.PGN)}))
        games = client.get_user_games("Sandbagger", "rapid", now=NOW)
        assert [g.game_id for g in games] == ["short001"]

        method, url, kwargs = session.calls[0]
        assert urlparse(url).path == "/api/games/user/Sandbagger"
        params = kwargs["params"]
        assert params["max"] == 100
        assert params["rated"] == "true"
        assert params["perfType"] == "rapid"
        assert params["ongoing"] == "false"
        assert params["since"] == int((NOW - timedelta(days=180)).timestamp() * 1000)
        assert kwargs["timeout"] <= 60

    def test_timeout_means_no_games(self, caplog):
        session = FakeSession(lambda *a: requests.Timeout("too slow"))
        client = LichessClient(session)
        with caplog.at_level(logging.WARNING, logger="sandbag_watch.lichess"):
            assert client.get_user_games("Sandbagger", "blitz", now=NOW) == []
        assert len(session.calls) == 1
        assert "No games for Sandbagger" in caplog.text

    def test_http_error_means_no_games(self):
        client, _ = client_for(queued(make_response(500, b"oops")))
        assert client.get_user_games("Sandbagger", "blitz", now=NOW) == []

    def test_trickling_export_means_no_games(self):
        """An export still downloading when the budget runs out yields no games."""
        body = [self.PGN[i:i + 8].encode() for i in range(0, len(self.PGN), 8)]
        response = StreamedResponse(body, on_chunk=lambda: time.sleep(0.02))
        client, _ = client_for(queued(response))
        assert client.get_user_games("Sandbagger", "blitz", now=NOW, timeout=0.05) == []
        assert response.closed
