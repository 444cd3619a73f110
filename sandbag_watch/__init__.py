"""
Sandbagging detection for Lichess rating-capped arenas.

Scans finished arenas with a rating ceiling, looks at the recent games of
high scorers and reports likely sandbaggers to a Zulip channel.
"""

from .config import ConfigError, Settings, load_thresholds, read_zuliprc
from .games import GameResult, MoveCounter, PartialGame, iter_games, parse_games, sorted_suspicious
from .lichess import (
    Arena,
    ArenaCatalog,
    DecodeError,
    LichessClient,
    Player,
    Schedule,
    User,
)
from .logs import setup_logging
from .scoring import (
    DEFAULT_THRESHOLDS,
    SandbagClassifier,
    ScoreThresholds,
    Tier,
    TierScores,
    Verdict,
    preselect_player,
)
from .transport import (
    BackoffPolicy,
    BasicAuth,
    BearerToken,
    RequestTimeout,
    RetriesExhausted,
    build_session,
    perform,
)
from .watcher import ArenaWatcher
from .zulip import DryRunNotifier, Notifier, ZulipClient, format_report, perf_index

__version__ = "0.1.0"
