from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set

import structlog
from pydantic import ValidationError

from .config import GameSettings, ScoringSettings, Settings, get_section
from .errors import InvalidArgumentError, NotFoundError, QuestionGenerationError
from .events import EventStore
from .models import (
    QUESTION_CATEGORIES,
    AnswerRecord,
    GameRecord,
    GameResult,
    GameSession,
    LeaderboardEntry,
    Player,
)
from .questions import QuestionProvider, build_question_provider
from .scoring import ScoringService
from .storage import Repositories, build_repositories, normalise_initials
from .utils import utcnow

logger = structlog.get_logger(__name__)


@dataclass
class PendingFinish:
    """A scored game whose results are not fully written to storage yet.

    ``saved`` names the writes that already succeeded so a retried finish
    only performs the remaining ones.
    """

    result: GameResult
    entries: List[LeaderboardEntry]
    saved: Set[str] = field(default_factory=set)


class GameController:
    """Owns live game sessions and hands finished ones to storage.

    Every mutation of a session runs under that game's lock, so answers from
    the two players are applied one at a time. Career stats are written under
    a per-player lock, so two games finishing for the same player both count.
    """

    def __init__(
        self,
        repositories: Repositories,
        questions: QuestionProvider,
        events: Optional[EventStore] = None,
        scoring: Optional[ScoringService] = None,
        game_settings: Optional[GameSettings] = None,
        scoring_settings: Optional[ScoringSettings] = None,
    ):
        self.repositories = repositories
        self.questions = questions
        self.events = events or EventStore()
        self.scoring = scoring or ScoringService()
        self.game_settings = game_settings or GameSettings()
        self.scoring_settings = scoring_settings or ScoringSettings()
        self.sessions: Dict[str, GameSession] = {}
        self.pending: Dict[str, PendingFinish] = {}
        self.locks: Dict[str, asyncio.Lock] = {}
        self.player_locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, game_id: str) -> asyncio.Lock:
        # only called for games that exist, so unknown ids never leave a lock behind
        return self.locks.setdefault(game_id, asyncio.Lock())

    def _player_lock(self, initials: str) -> asyncio.Lock:
        return self.player_locks.setdefault(initials, asyncio.Lock())

    def resolve_category(self, category: Optional[str]) -> str:
        """Map free text onto one of the known categories, ignoring case."""
        wanted = (category or "").strip() or self.game_settings.default_category
        for known in QUESTION_CATEGORIES:
            if known.lower() == wanted.lower():
                return known
        raise InvalidArgumentError(
            f"Unknown category {wanted!r}, expected one of: {', '.join(QUESTION_CATEGORIES)}"
        )

    def evict_stale_sessions(self, now: Optional[datetime] = None) -> List[str]:
        """Drop live games that were started too long ago and never finished.

        Games that are scored but still waiting on storage are kept so the
        finish can be retried.
        """
        cutoff = (now or utcnow()) - timedelta(minutes=self.game_settings.session_timeout_minutes)
        stale = [
            game_id
            for game_id, session in self.sessions.items()
            if game_id not in self.pending
            and session.start_time < cutoff
            and not (game_id in self.locks and self.locks[game_id].locked())
        ]
        for game_id in stale:
            del self.sessions[game_id]
            self.locks.pop(game_id, None)
            logger.info("game_abandoned", game_id=game_id)
        return stale

    async def create_game(
        self,
        player1_initials: str,
        player2_initials: str,
        category: Optional[str] = None,
    ) -> GameSession:
        if normalise_initials(player1_initials) == normalise_initials(player2_initials):
            raise InvalidArgumentError("Players must have different initials")

        category = self.resolve_category(category)
        per_player = self.game_settings.questions_per_player
        self.evict_stale_sessions()

        try:
            player1 = await self.repositories.players.get_or_create(player1_initials)
            player2 = await self.repositories.players.get_or_create(player2_initials)
        except ValidationError as exc:
            raise InvalidArgumentError(str(exc)) from exc

        questions = await self.questions.generate(per_player * 2, category)
        if len(questions) < per_player * 2:
            raise QuestionGenerationError(
                f"Needed {per_player * 2} questions for {category} but only got {len(questions)}"
            )

        session = GameSession(
            player1=player1,
            player2=player2,
            player1_questions=questions[:per_player],
            player2_questions=questions[per_player : per_player * 2],
            category=category,
            rules=self.scoring_settings,
        )
        self.sessions[session.game_id] = session

        await self.events.append(
            session.game_id,
            {
                "type": "game_created",
                "players": [player1.initials, player2.initials],
                "category": category,
                "questions_per_player": per_player,
            },
        )
        logger.info(
            "game_created",
            game_id=session.game_id,
            player1=player1.initials,
            player2=player2.initials,
            category=category,
        )
        return session

    def find_session(self, game_id: str) -> Optional[GameSession]:
        return self.sessions.get(game_id)

    def get_session(self, game_id: str) -> GameSession:
        session = self.find_session(game_id)
        if session is None:
            raise NotFoundError(f"Game {game_id} not found")
        return session

    async def get_record(self, game_id: str) -> GameRecord:
        """Summary of a game, live or already stored."""
        session = self.find_session(game_id)
        if session is not None:
            return session.to_record()
        record = await self.repositories.games.get(game_id)
        if record is None:
            raise NotFoundError(f"Game {game_id} not found")
        return record

    async def submit_answer(
        self,
        game_id: str,
        player_slot: int,
        question_id: str,
        option_index: int,
        response_time_ms: int,
    ) -> AnswerRecord:
        self.get_session(game_id)
        async with self._lock(game_id):
            # the game may have been finished while we waited
            session = self.get_session(game_id)
            question = session.current_question(player_slot)
            if question is not None and question.id != question_id:
                raise InvalidArgumentError(
                    f"Question {question_id} is not the current question for player {player_slot}"
                )

            record = session.record_answer(
                player_slot,
                question is not None and question.is_correct(option_index),
                response_time_ms,
                option_index=option_index,
            )
            sheet = session.sheet_for(player_slot)

            await self.events.append(
                game_id,
                {
                    "type": "answer_recorded",
                    "player_slot": player_slot,
                    "question_id": question_id,
                    "is_correct": record.is_correct,
                    "points": record.points,
                    "total_score": sheet.total_score,
                    "current_streak": sheet.current_streak,
                },
            )
            if session.is_complete():
                await self.events.append(game_id, {"type": "game_complete"})
            return record

    async def finish_game(self, game_id: str) -> GameResult:
        """Score a complete game and write its results.

        If a write fails the game stays live and scored; calling this again
        retries only the writes that have not happened yet.
        """
        self.get_session(game_id)
        async with self._lock(game_id):
            session = self.get_session(game_id)
            pending = self.pending.get(game_id)
            if pending is None:
                result = self.scoring.finalize(session)
                pending = PendingFinish(result=result, entries=self._leaderboard_entries(session, result))
                self.pending[game_id] = pending

            try:
                await self._persist(session, pending)
            except Exception:
                logger.exception("game_persist_failed", game_id=game_id, saved=sorted(pending.saved))
                raise

            await self.events.append(game_id, {"type": "game_over", "result": pending.result.model_dump()})
            del self.sessions[game_id]
            del self.pending[game_id]
            self.locks.pop(game_id, None)
            return pending.result

    @staticmethod
    def _leaderboard_entries(session: GameSession, result: GameResult) -> List[LeaderboardEntry]:
        entries = []
        for slot, won, lost in (
            (1, result.player1_won, result.player2_won),
            (2, result.player2_won, result.player1_won),
        ):
            sheet = session.sheet_for(slot)
            entries.append(
                LeaderboardEntry(
                    player_name=session.player_for(slot).initials,
                    score=sheet.total_score,
                    max_streak=sheet.max_streak,
                    category=session.category,
                    wins=int(won),
                    losses=int(lost),
                )
            )
        return entries

    async def _persist(self, session: GameSession, pending: PendingFinish) -> None:
        result = pending.result
        for slot, won in ((1, result.player1_won), (2, result.player2_won)):
            step = f"player{slot}"
            if step not in pending.saved:
                await self._save_player_stats(session, slot, won)
                pending.saved.add(step)

        if "game" not in pending.saved:
            await self.repositories.games.save(session.to_record())
            pending.saved.add("game")

        for entry in pending.entries:
            if entry.id not in pending.saved:
                await self.repositories.leaderboard.add(entry)
                pending.saved.add(entry.id)

    async def _save_player_stats(self, session: GameSession, slot: int, is_winner: bool) -> None:
        # apply this game to the stored copy, other games may have finished since this one started
        initials = session.player_for(slot).initials
        async with self._player_lock(initials):
            player = await self.repositories.players.get_or_create(initials)
            self.scoring.update_player_stats(player, is_winner, session)
            await self.repositories.players.update(player)

    async def leaderboard(self, category: Optional[str] = None, count: int = 10) -> List[LeaderboardEntry]:
        return await self.repositories.leaderboard.top(self.resolve_category(category), count)

    async def top_players(self, count: int = 10) -> List[Player]:
        return await self.repositories.players.top(count)

    async def get_player(self, initials: str) -> Player:
        player = await self.repositories.players.get(initials)
        if player is None:
            raise NotFoundError(f"Player {normalise_initials(initials)} not found")
        return player

    async def recent_games(self, initials: Optional[str] = None, count: int = 10) -> List[GameRecord]:
        return await self.repositories.games.recent(initials, count)


def build_controller(settings: Settings) -> GameController:
    return GameController(
        repositories=build_repositories(settings),
        questions=build_question_provider(settings),
        events=EventStore(),
        game_settings=get_section("game", settings),
        scoring_settings=get_section("scoring", settings),
    )
