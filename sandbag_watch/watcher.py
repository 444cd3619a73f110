"""
Scan loop: arenas -> leaderboard -> prescreen -> games -> classify -> report.

Everything runs sequentially: one arena at a time, one player at a time.
"""

import logging
import time
from typing import Callable, Optional

import requests

from .games import sorted_suspicious
from .lichess import Arena, LichessClient, Player, User
from .scoring import SandbagClassifier, Verdict
from .transport import RetriesExhausted
from .zulip import Notifier

logger = logging.getLogger(__name__)


class ArenaWatcher:
    """Periodically scans finished rating-capped arenas for sandbaggers."""

    def __init__(
        self,
        lichess: LichessClient,
        classifier: SandbagClassifier,
        notifier: Notifier,
        sleep_seconds: float,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.lichess = lichess
        self.classifier = classifier
        self.notifier = notifier
        self.sleep_seconds = sleep_seconds
        self.sleep = sleep

    def lookup_user(self, username: str) -> Optional[User]:
        """Account info, or None if it could not be fetched or decoded."""
        try:
            return self.lichess.get_user(username)
        except (ValueError, requests.RequestException, RetriesExhausted) as e:
            logger.warning("User lookup failed for %s: %s", username, e)
            return None

    def check_player(self, arena: Arena, player: Player) -> Optional[Verdict]:
        """Run one leaderboard entry through the pipeline, reporting it if flagged."""
        if not self.classifier.preselect(arena, player):
            return None

        logger.debug("Checking %s (score %d) in %s", player.username, player.score, arena.id)
        games = self.lichess.get_user_games(player.username, arena.perf_key)
        suspicious = sorted_suspicious(games)

        user = None
        verdict = self.classifier.score_tier(arena, player)
        if verdict is None:
            user = self.lookup_user(player.username)
            verdict = self.classifier.classify(arena, player, suspicious, user)

        if verdict is not None:
            self.notifier.send_report(arena, player, verdict, suspicious, user)
        return verdict

    def scan_arena(self, arena: Arena) -> int:
        """Check every player of one arena; returns the number of reports."""
        logger.info("Scanning %s (%s)", arena.full_name, arena.id)
        reports = 0
        for player in self.lichess.iter_players(arena):
            if self.check_player(arena, player) is not None:
                reports += 1
        return reports

    def scan(self) -> int:
        """One cycle over all eligible arenas; returns the number of reports."""
        try:
            arenas = self.lichess.eligible_arenas()
        except (ValueError, requests.RequestException, RetriesExhausted):
            logger.exception("Could not fetch the arena catalog")
            return 0

        reports = 0
        for arena in arenas:
            try:
                reports += self.scan_arena(arena)
            except requests.RequestException:
                logger.exception("Aborted scan of %s", arena.id)
        logger.info("Cycle done: %d arenas, %d reports", len(arenas), reports)
        return reports

    def run(self, cycles: Optional[int] = None) -> None:
        """
        Announce startup, then scan and sleep forever.

        Args:
            cycles: Stop after this many scans (None runs until interrupted).
        """
        self.notifier.announce_startup()
        done = 0
        while True:
            self.scan()
            done += 1
            if cycles is not None and done >= cycles:
                return
            logger.debug("Sleeping %ss", self.sleep_seconds)
            self.sleep(self.sleep_seconds)
