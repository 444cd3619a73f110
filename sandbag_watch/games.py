"""
Game history parsing.

Turns a PGN export of a player's recent games into per-game outcomes:
- Game id from the Site header
- Which color the player had
- Whether the player won
- Number of mainline plies (side variations are skipped entirely)
"""

import io
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

import chess
import chess.pgn

WHITE_WINS = "1-0"
BLACK_WINS = "0-1"


@dataclass(frozen=True)
class GameResult:
    """Outcome of one game from the examined player's point of view."""
    game_id: str
    ply: int
    won: bool
    is_white: bool

    @property
    def color(self) -> str:
        return "white" if self.is_white else "black"


@dataclass
class PartialGame:
    """Facts gathered while a game is being read; any of them may be missing."""
    game_id: Optional[str] = None
    ply: int = 0
    is_white: Optional[bool] = None
    outcome: Optional[str] = None
    broken: bool = False

    @property
    def won(self) -> Optional[bool]:
        """Unknown until both the color and the outcome are known."""
        if self.is_white is None or self.outcome is None:
            return None
        if self.is_white:
            return self.outcome == WHITE_WINS
        return self.outcome == BLACK_WINS

    def complete(self) -> Optional[GameResult]:
        """Return the finished GameResult, or None if any field is missing."""
        won = self.won
        if self.broken or not self.game_id or won is None:
            return None
        return GameResult(
            game_id=self.game_id,
            ply=self.ply,
            won=won,
            is_white=self.is_white,
        )


class MoveCounter(chess.pgn.BaseVisitor):
    """
    PGN visitor collecting a PartialGame for one game.

    Only mainline moves are counted: `begin_variation` asks the reader to skip
    each side line up to its matching close paren, nested lines included.
    """

    def __init__(self, username: str):
        self.username = username.lower()
        self.game = PartialGame()

    def begin_game(self) -> None:
        self.game = PartialGame()

    def visit_header(self, tagname: str, tagvalue: str) -> None:
        if tagname == "Site":
            self.game.game_id = tagvalue.rstrip("/").rsplit("/", 1)[-1] or None
        elif tagname == "White":
            self.game.is_white = self.username in tagvalue.lower()
        elif tagname == "Result":
            self.game.outcome = tagvalue

    def visit_move(self, board: chess.Board, move: chess.Move) -> None:
        self.game.ply += 1

    def begin_variation(self):
        return chess.pgn.SKIP

    def handle_error(self, error: Exception) -> None:
        # Unreadable movetext: the reader skips the rest of this game
        self.game.broken = True

    def result(self) -> PartialGame:
        return self.game


def iter_games(pgn_text: str, username: str) -> Iterator[GameResult]:
    """
    Yield a GameResult for every complete game in a PGN string.

    Games missing their id, color or outcome, or with unreadable movetext,
    are dropped.

    Args:
        pgn_text: PGN text, possibly containing many games.
        username: Player whose point of view the outcomes are computed from.
    """
    pgn_io = io.StringIO(pgn_text)
    while True:
        partial = chess.pgn.read_game(pgn_io, Visitor=lambda: MoveCounter(username))
        if partial is None:
            break
        game = partial.complete()
        if game is not None:
            yield game


def parse_games(pgn_text: str, username: str) -> list[GameResult]:
    """Parse all complete games of a PGN export."""
    return list(iter_games(pgn_text, username))


def sorted_suspicious(games: Iterable[GameResult]) -> list[GameResult]:
    """
    Games the player did not win, shortest first.

    Short losses are the strongest signal of deliberate losing, so they lead
    any report built from this list.
    """
    return sorted((g for g in games if not g.won), key=lambda g: g.ply)
