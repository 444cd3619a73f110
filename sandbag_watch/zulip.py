"""
Zulip notifications for flagged players.

Reports are Zulip markdown messages posted to one channel/topic through the
same retrying request layer as the Lichess calls.

API docs: https://zulip.com/api/send-message
"""

import logging
from typing import Optional
from urllib.parse import urlencode

import requests

from .games import GameResult
from .lichess import LICHESS_ROOT, Arena, Player, User
from .scoring import Verdict
from .transport import DEFAULT_BACKOFF, BackoffPolicy, BasicAuth, perform

logger = logging.getLogger(__name__)

# Numeric perf ids used by the Lichess game search
PERF_INDEX = {
    "bullet": 1,
    "blitz": 2,
    "classical": 3,
    "rapid": 6,
}

UNKNOWN_PERF = "?"
MAX_LISTED_LOSSES = 6


def perf_index(perf_key: str) -> Optional[int]:
    """Lichess search id of a perf, or None when it has none."""
    return PERF_INDEX.get(perf_key)


class ZulipClient:
    """Minimal Zulip bot client: sends stream messages."""

    def __init__(
        self,
        session: requests.Session,
        site: str,
        credential: BasicAuth,
        policy: BackoffPolicy = DEFAULT_BACKOFF,
    ):
        self.session = session
        self.site = site.rstrip("/")
        self.credential = credential
        self.policy = policy

    def send_message(self, channel: str, topic: str, content: str) -> requests.Response:
        body = {
            "type": "stream",
            "to": channel,
            "topic": topic,
            "content": content,
        }
        return perform(
            self.session,
            "POST",
            f"{self.site}/api/v1/messages",
            body=body,
            credential=self.credential,
            policy=self.policy,
        )


# =============================================================================
# Report formatting
# =============================================================================

def _search_link(root: str, player: Player, perf_key: str, **criteria) -> str:
    index = perf_index(perf_key)
    query = {"perf": index if index is not None else UNKNOWN_PERF, "mode": 1}
    query.update(criteria)
    return f"{root}/@/{player.username}/search?{urlencode(query, safe=UNKNOWN_PERF)}"


def loss_link(root: str, game: GameResult) -> str:
    """Link to the losing position: `/<id>/<color>#<ply>`."""
    return f"[ply {game.ply}]({root}/{game.game_id}/{game.color}#{game.ply})"


def format_report(
    arena: Arena,
    player: Player,
    verdict: Verdict,
    suspicious: list[GameResult],
    user: Optional[User] = None,
    root: str = LICHESS_ROOT,
) -> str:
    """Zulip markdown body of a sandbagging report."""
    lines = [
        f"**[{player.username}]({root}/@/{player.username})** scored {player.score} "
        f"(rank #{player.rank}, rating {player.rating}"
        + (f", performance {player.performance}" if player.performance is not None else "")
        + f") in [{arena.full_name}]({root}/tournament/{arena.id})",
        f"Flagged ({verdict.tier.value}): " + "; ".join(verdict.reasons),
    ]
    if user is not None:
        lines.append(f"Account age: {user.age().days} days" + (" (tos violation)" if user.tos_violation else ""))

    if suspicious:
        shortest = ", ".join(loss_link(root, g) for g in suspicious[:MAX_LISTED_LOSSES])
        lines.append(f"Shortest losses ({len(suspicious)} total): {shortest}")
    else:
        lines.append("No recent losses found")

    losses = _search_link(root, player, arena.perf_key, **{
        "players.a": player.username,
        "players.loser": player.username,
        "sort.field": "t",
        "sort.order": "asc",
    })
    games = _search_link(root, player, arena.perf_key, **{
        "players.a": player.username,
        "sort.field": "d",
        "sort.order": "desc",
    })
    lines.append(f"[Losses by length]({losses}) | [All rated games]({games})")
    return "\n".join(lines)


# =============================================================================
# Notifiers
# =============================================================================

class Notifier:
    """Posts the startup announcement and per-player reports."""

    def __init__(self, client: ZulipClient, channel: str, topic: str, lichess_root: str = LICHESS_ROOT):
        self.client = client
        self.channel = channel
        self.topic = topic
        self.lichess_root = lichess_root.rstrip("/")

    def _send(self, content: str) -> None:
        self.client.send_message(self.channel, self.topic, content)

    def announce_startup(self) -> None:
        self._send("Sandbag watcher started, scanning rating-capped arenas.")

    def send_report(
        self,
        arena: Arena,
        player: Player,
        verdict: Verdict,
        suspicious: list[GameResult],
        user: Optional[User] = None,
    ) -> None:
        logger.info("Reporting %s in %s (%s)", player.username, arena.id, verdict.tier.value)
        self._send(format_report(arena, player, verdict, suspicious, user, root=self.lichess_root))


class DryRunNotifier(Notifier):
    """Logs messages instead of posting them."""

    def __init__(self, channel: str = "", topic: str = "", lichess_root: str = LICHESS_ROOT):
        super().__init__(None, channel, topic, lichess_root)

    def _send(self, content: str) -> None:
        logger.info("Dry run, not posting:\n%s", content)
