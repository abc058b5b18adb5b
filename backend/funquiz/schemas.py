from __future__ import annotations

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, Field

from .models import AnswerRecord, Difficulty, GameSession, Player, Question, ScoreSheet


class CreateGameIn(BaseModel):
    player1_initials: str
    player2_initials: str
    category: Optional[str] = None


class AnswerIn(BaseModel):
    player_slot: Literal[1, 2]
    question_id: str
    option_index: int
    response_time_ms: int = Field(ge=0)


class PublicQuestion(BaseModel):
    """A question as shown to players, without the answer."""

    id: str
    text: str
    options: List[str]
    category: str
    difficulty: Difficulty

    @classmethod
    def from_question(cls, q: Question) -> "PublicQuestion":
        return cls(id=q.id, text=q.text, options=q.options, category=q.category, difficulty=q.difficulty)


class PlayerProgressOut(BaseModel):
    initials: str
    sheet: ScoreSheet
    questions_total: int
    current_question: Optional[PublicQuestion] = None


class GameOut(BaseModel):
    game_id: str
    state: str
    category: str
    player1: PlayerProgressOut
    player2: PlayerProgressOut
    start_time: datetime
    end_time: Optional[datetime] = None

    @classmethod
    def from_session(cls, s: GameSession) -> "GameOut":
        def progress(slot: int) -> PlayerProgressOut:
            current = s.current_question(slot)
            return PlayerProgressOut(
                initials=s.player_for(slot).initials,
                sheet=s.sheet_for(slot),
                questions_total=len(s.questions_for(slot)),
                current_question=PublicQuestion.from_question(current) if current else None,
            )

        return cls(
            game_id=s.game_id,
            state=s.state,
            category=s.category,
            player1=progress(1),
            player2=progress(2),
            start_time=s.start_time,
            end_time=s.end_time,
        )


class AnswerOut(BaseModel):
    answer: AnswerRecord
    game_complete: bool


class EventsOut(BaseModel):
    events: List[dict[str, Any]]
    latest_seq: Optional[int] = None


class PlayerOut(BaseModel):
    initials: str
    games_played: int
    games_won: int
    games_lost: int
    total_score: int
    total_correct_answers: int
    win_rate: float
    average_score: float
    accuracy: float
    last_played: datetime
    rank: Optional[int] = None

    @classmethod
    def from_player(cls, p: Player, rank: Optional[int] = None) -> "PlayerOut":
        return cls(
            **p.model_dump(exclude={"id"}),
            win_rate=p.win_rate,
            average_score=p.average_score,
            accuracy=p.accuracy,
            rank=rank,
        )
