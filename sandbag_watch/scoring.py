"""
Score thresholds and sandbagging heuristics.

A player goes through two gates:
1. `preselect_player`: cheap check on the leaderboard score alone
2. `SandbagClassifier.classify`: three tiers, first match wins

Tiers, in evaluation order:
- SCORE: arena score at or above the high threshold
- MODERATE: new account, many short losses, or rating/performance far from the cap
- STRICT: very new account, even more losses, or a wider rating gap
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .games import GameResult
from .lichess import Arena, Player, User


# =============================================================================
# Thresholds
# =============================================================================

@dataclass(frozen=True)
class TierScores:
    """Arena score threshold per speed category for one tier."""
    bullet: int
    super_blitz: int
    blitz: int
    rapid: int

    @classmethod
    def from_dict(cls, data: dict) -> "TierScores":
        return cls(
            bullet=int(data["bullet"]),
            super_blitz=int(data["superBlitz"]),
            blitz=int(data["blitz"]),
            rapid=int(data["rapid"]),
        )

    def for_perf(self, perf: Optional[str]) -> Optional[int]:
        """Threshold for a category, or None if the category has none."""
        return {
            "bullet": self.bullet,
            "superBlitz": self.super_blitz,
            "blitz": self.blitz,
            "rapid": self.rapid,
        }.get(perf)


@dataclass(frozen=True)
class ScoreThresholds:
    low: TierScores
    medium: TierScores
    high: TierScores

    @classmethod
    def from_dict(cls, data: dict) -> "ScoreThresholds":
        """Build from `{"low": {...}, "medium": {...}, "high": {...}}`."""
        return cls(
            low=TierScores.from_dict(data["low"]),
            medium=TierScores.from_dict(data["medium"]),
            high=TierScores.from_dict(data["high"]),
        )


DEFAULT_THRESHOLDS = ScoreThresholds(
    high=TierScores(bullet=45, super_blitz=45, blitz=40, rapid=35),
    medium=TierScores(bullet=35, super_blitz=35, blitz=30, rapid=25),
    low=TierScores(bullet=30, super_blitz=30, blitz=25, rapid=20),
)


def _reaches(scores: TierScores, arena: Arena, player: Player) -> bool:
    threshold = scores.for_perf(arena.speed)
    return threshold is not None and player.score >= threshold


def preselect_player(thresholds: ScoreThresholds, arena: Arena, player: Player) -> bool:
    """
    Whether a player scored enough to be worth a game history lookup.

    Unknown speed categories are never selected.
    """
    return _reaches(thresholds.low, arena, player)


# =============================================================================
# Classification
# =============================================================================

class Tier(Enum):
    SCORE = "score"
    MODERATE = "moderate"
    STRICT = "strict"


@dataclass(frozen=True)
class TierRule:
    """Limits of the MODERATE and STRICT tiers."""
    tier: Tier
    max_losses: int  # report when strictly more suspicious games
    rating_margin: int  # report when rating < ceiling - margin
    performance_margin: int  # report when performance > ceiling + margin
    very_new_only: bool


MODERATE_RULE = TierRule(Tier.MODERATE, max_losses=25, rating_margin=200, performance_margin=500, very_new_only=False)
STRICT_RULE = TierRule(Tier.STRICT, max_losses=30, rating_margin=300, performance_margin=400, very_new_only=True)


@dataclass(frozen=True)
class Verdict:
    """Why a player is being reported."""
    tier: Tier
    reasons: list = field(default_factory=list)


def below_ceiling(ceiling: int, margin: int) -> int:
    """`ceiling - margin`, never below zero."""
    return max(ceiling - margin, 0)


class SandbagClassifier:
    """
    Decides whether a preselected player should be reported, using the
    threshold table it was built with.
    """

    def __init__(self, thresholds: ScoreThresholds, rules: tuple = (MODERATE_RULE, STRICT_RULE)):
        self.thresholds = thresholds
        self.rules = rules

    def preselect(self, arena: Arena, player: Player) -> bool:
        return preselect_player(self.thresholds, arena, player)

    def score_tier(self, arena: Arena, player: Player) -> Optional[Verdict]:
        """SCORE tier, decidable from the leaderboard alone."""
        if not _reaches(self.thresholds.high, arena, player):
            return None
        threshold = self.thresholds.high.for_perf(arena.speed)
        return Verdict(Tier.SCORE, [f"score {player.score} >= {threshold}"])

    def rule_tier(
        self,
        rule: TierRule,
        arena: Arena,
        player: Player,
        suspicious: list[GameResult],
        user: Optional[User] = None,
        now=None,
    ) -> Optional[Verdict]:
        reasons = []

        if user is not None:
            young = user.is_very_new(now) if rule.very_new_only else user.is_new(now)
            if young:
                reasons.append(f"account created {user.age(now).days} days ago")

        if len(suspicious) > rule.max_losses:
            reasons.append(f"{len(suspicious)} lost games (> {rule.max_losses})")

        ceiling = arena.rating_limit()
        if ceiling is not None and player.performance is not None:
            if player.rating < below_ceiling(ceiling, rule.rating_margin):
                reasons.append(f"rating {player.rating} < {ceiling} - {rule.rating_margin}")
            if player.performance > ceiling + rule.performance_margin:
                reasons.append(f"performance {player.performance} > {ceiling} + {rule.performance_margin}")

        if not reasons:
            return None
        return Verdict(rule.tier, reasons)

    def classify(
        self,
        arena: Arena,
        player: Player,
        suspicious: list[GameResult],
        user: Optional[User] = None,
        now=None,
    ) -> Optional[Verdict]:
        """
        First matching tier, or None.

        Args:
            arena: Arena the player scored in.
            player: Leaderboard entry.
            suspicious: Games the player did not win (see `sorted_suspicious`).
            user: Account info; None if the lookup failed, which disables the
                account age checks only.
            now: Reference time for account age (defaults to now).
        """
        verdict = self.score_tier(arena, player)
        if verdict is not None:
            return verdict
        for rule in self.rules:
            verdict = self.rule_tier(rule, arena, player, suspicious, user, now)
            if verdict is not None:
                return verdict
        return None
