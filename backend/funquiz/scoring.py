from __future__ import annotations

from typing import Optional

import structlog

from .errors import InvalidArgumentError, InvalidOperationError
from .models import GameResult, GameSession, Player
from .utils import utcnow

logger = structlog.get_logger(__name__)


class ScoringService:
    """Turns a completed game into a verdict and applies it to player stats.

    Performs no I/O; persisting the updated players is the caller's job.
    """

    def determine_game_result(self, session: Optional[GameSession]) -> GameResult:
        self._require_finished(session)

        p1 = session.player1_total_score
        p2 = session.player2_total_score
        is_tie = p1 == p2
        player1_won = p1 > p2
        player2_won = p2 > p1

        winner_initials = None
        if player1_won:
            winner_initials = session.player1_initials
        elif player2_won:
            winner_initials = session.player2_initials

        return GameResult(
            is_tie=is_tie,
            player1_won=player1_won,
            player2_won=player2_won,
            player1_score=p1,
            player2_score=p2,
            winner_initials=winner_initials,
        )

    def update_player_stats(self, player: Optional[Player], is_winner: bool, session: Optional[GameSession]) -> None:
        """Add this game's score and correct answers to ``player``.

        Apply it once to any given copy of the player; the controller applies
        it again to the stored copy when it saves the game.
        """
        if player is None:
            raise InvalidArgumentError("player is required")
        self._require_finished(session)

        slot = session.slot_of(player.initials)
        sheet = session.sheet_for(slot)
        is_tie = session.player1_total_score == session.player2_total_score

        player.update_stats(sheet.total_score, sheet.correct_count, is_winner, is_tie=is_tie)
        logger.info(
            "player_stats_updated",
            game_id=session.game_id,
            initials=player.initials,
            score=sheet.total_score,
            correct=sheet.correct_count,
            is_winner=is_winner,
        )

    def finalize(self, session: Optional[GameSession]) -> GameResult:
        """Score a complete session once and update both players."""
        self._require_finished(session)
        if session.state == "scored":
            raise InvalidOperationError(f"Game {session.game_id} has already been scored")

        result = self.determine_game_result(session)

        self.update_player_stats(session.player1, result.player1_won, session)
        self.update_player_stats(session.player2, result.player2_won, session)

        session.is_tie = result.is_tie
        session.winner_initials = result.winner_initials
        session.end_time = session.end_time or utcnow()
        session.state = "scored"

        logger.info(
            "game_scored",
            game_id=session.game_id,
            player1_score=result.player1_score,
            player2_score=result.player2_score,
            is_tie=result.is_tie,
            winner=result.winner_initials,
        )
        return result

    @staticmethod
    def _require_finished(session: Optional[GameSession]) -> None:
        if session is None:
            raise InvalidArgumentError("session is required")
        if not session.is_complete():
            raise InvalidOperationError(f"Game {session.game_id} is still in progress")
