from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from .bonuses import speed_bonus, streak_bonus, time_bonus
from .config import ScoringSettings
from .errors import InvalidArgumentError, InvalidOperationError
from .utils import utcnow

QUESTION_CATEGORIES = [
    "General",
    "Science",
    "History",
    "Geography",
    "Technology",
    "Sports",
    "Entertainment",
    "Arts",
]

# accuracy is reported against a standard ten-question round
QUESTIONS_PER_GAME_FOR_ACCURACY = 10


def _new_id() -> str:
    return uuid.uuid4().hex


class Difficulty(str, Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


BASE_POINTS = {
    Difficulty.EASY: 1,
    Difficulty.MEDIUM: 2,
    Difficulty.HARD: 3,
}


class Question(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    text: str
    options: List[str] = Field(min_length=2)
    correct_index: int
    category: str = "General"
    difficulty: Difficulty = Difficulty.MEDIUM

    @model_validator(mode="after")
    def _check_correct_index(self) -> "Question":
        if not 0 <= self.correct_index < len(self.options):
            raise ValueError(
                f"correct_index {self.correct_index} is outside the {len(self.options)} options"
            )
        return self

    @property
    def correct_answer(self) -> str:
        return self.options[self.correct_index]

    @property
    def base_points(self) -> int:
        return BASE_POINTS.get(self.difficulty, 1)

    def is_correct(self, option_index: int) -> bool:
        return option_index == self.correct_index


class Player(BaseModel):
    id: str = Field(default_factory=_new_id)
    initials: str
    games_played: int = 0
    games_won: int = 0
    games_lost: int = 0
    total_score: int = 0
    total_correct_answers: int = 0
    last_played: datetime = Field(default_factory=utcnow)

    @field_validator("initials")
    @classmethod
    def _normalise_initials(cls, value: str) -> str:
        value = (value or "").strip().upper()
        if len(value) != 3 or not value.isalpha():
            raise ValueError("Initials must be exactly three letters")
        return value

    @property
    def win_rate(self) -> float:
        return self.games_won / self.games_played if self.games_played else 0.0

    @property
    def average_score(self) -> float:
        return self.total_score / self.games_played if self.games_played else 0.0

    @property
    def accuracy(self) -> float:
        if not self.games_played:
            return 0.0
        return self.total_correct_answers / (self.games_played * QUESTIONS_PER_GAME_FOR_ACCURACY)

    def update_stats(self, score_delta: int, correct_delta: int, is_winner: bool, is_tie: bool = False) -> None:
        """Fold one finished game into the lifetime totals.

        Not idempotent: each call counts another game.
        """
        if score_delta < 0 or correct_delta < 0:
            raise InvalidArgumentError("Player stats can only grow")
        if is_winner and is_tie:
            raise InvalidArgumentError("A tied game has no winner")

        self.games_played += 1
        if is_winner:
            self.games_won += 1
        elif not is_tie:
            self.games_lost += 1
        self.total_score += score_delta
        self.total_correct_answers += correct_delta
        self.last_played = utcnow()


class AnswerRecord(BaseModel):
    question_id: str
    is_correct: bool
    response_time_ms: int
    option_index: Optional[int] = None
    correct_index: Optional[int] = None
    base_points: int = 0
    streak_bonus: int = 0
    speed_bonus: int = 0
    time_bonus: int = 0

    @computed_field
    @property
    def points(self) -> int:
        return self.base_points + self.streak_bonus + self.speed_bonus + self.time_bonus


class ScoreSheet(BaseModel):
    """Running score of one player within one game."""

    base_score: int = 0
    streak_bonus: int = 0
    speed_bonus: int = 0
    time_bonus: int = 0
    current_streak: int = 0
    max_streak: int = 0
    correct_count: int = 0
    total_response_ms: int = 0
    answers: List[AnswerRecord] = Field(default_factory=list)

    @computed_field
    @property
    def total_score(self) -> int:
        return self.base_score + self.streak_bonus + self.speed_bonus + self.time_bonus


class GameResult(BaseModel):
    is_tie: bool
    player1_won: bool
    player2_won: bool
    player1_score: int
    player2_score: int
    winner_initials: Optional[str] = None


# States: in_progress -> complete -> scored
class GameSession(BaseModel):
    game_id: str = Field(default_factory=_new_id)
    player1: Player
    player2: Player
    player1_questions: List[Question] = Field(min_length=1)
    player2_questions: List[Question] = Field(min_length=1)
    player1_sheet: ScoreSheet = Field(default_factory=ScoreSheet)
    player2_sheet: ScoreSheet = Field(default_factory=ScoreSheet)
    category: str = "General"
    state: Literal["in_progress", "complete", "scored"] = "in_progress"
    winner_initials: Optional[str] = None
    is_tie: bool = False
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    rules: ScoringSettings = Field(default_factory=ScoringSettings, exclude=True)

    @model_validator(mode="after")
    def _check_players(self) -> "GameSession":
        if self.player1.initials == self.player2.initials:
            raise ValueError("A game needs two different players")
        return self

    @property
    def player1_initials(self) -> str:
        return self.player1.initials

    @property
    def player2_initials(self) -> str:
        return self.player2.initials

    @property
    def player1_total_score(self) -> int:
        return self.player1_sheet.total_score

    @property
    def player2_total_score(self) -> int:
        return self.player2_sheet.total_score

    @property
    def winner(self) -> Optional[Player]:
        if self.winner_initials is None:
            return None
        return self.player1 if self.winner_initials == self.player1.initials else self.player2

    def questions_for(self, player_slot: int) -> List[Question]:
        self._check_slot(player_slot)
        return self.player1_questions if player_slot == 1 else self.player2_questions

    def sheet_for(self, player_slot: int) -> ScoreSheet:
        self._check_slot(player_slot)
        return self.player1_sheet if player_slot == 1 else self.player2_sheet

    def player_for(self, player_slot: int) -> Player:
        self._check_slot(player_slot)
        return self.player1 if player_slot == 1 else self.player2

    def slot_of(self, initials: str) -> int:
        if initials == self.player1.initials:
            return 1
        if initials == self.player2.initials:
            return 2
        raise InvalidArgumentError(f"Player {initials} did not take part in game {self.game_id}")

    def has_finished(self, player_slot: int) -> bool:
        return len(self.sheet_for(player_slot).answers) >= len(self.questions_for(player_slot))

    def current_question(self, player_slot: int) -> Optional[Question]:
        """Next unanswered question for the slot, or None once it is done."""
        if self.has_finished(player_slot):
            return None
        return self.questions_for(player_slot)[len(self.sheet_for(player_slot).answers)]

    def is_complete(self) -> bool:
        return self.state != "in_progress"

    def record_answer(
        self,
        player_slot: int,
        is_correct: bool,
        response_time_ms: int,
        option_index: Optional[int] = None,
    ) -> AnswerRecord:
        """Score one answer for ``player_slot`` against its next question."""
        if self.is_complete():
            raise InvalidOperationError(f"Game {self.game_id} is no longer accepting answers")
        if response_time_ms < 0:
            raise InvalidArgumentError("Response time cannot be negative")

        question = self.current_question(player_slot)
        if question is None:
            raise InvalidOperationError(f"Player {player_slot} has no unanswered questions")

        sheet = self.sheet_for(player_slot)
        question_count = len(self.questions_for(player_slot))

        # work everything out before touching the sheet
        if is_correct:
            record = AnswerRecord(
                question_id=question.id,
                is_correct=True,
                response_time_ms=response_time_ms,
                option_index=option_index,
                correct_index=question.correct_index,
                base_points=question.base_points,
                streak_bonus=streak_bonus(sheet.current_streak, self.rules),
                speed_bonus=speed_bonus(response_time_ms, self.rules),
            )
            new_streak = sheet.current_streak + 1
            new_correct = sheet.correct_count + 1
        else:
            record = AnswerRecord(
                question_id=question.id,
                is_correct=False,
                response_time_ms=response_time_ms,
                option_index=option_index,
                correct_index=question.correct_index,
            )
            new_streak = 0
            new_correct = sheet.correct_count

        new_total_ms = sheet.total_response_ms + response_time_ms
        if len(sheet.answers) + 1 == question_count and new_correct > 0:
            record.time_bonus = time_bonus(new_total_ms, question_count, self.rules)

        sheet.base_score += record.base_points
        sheet.streak_bonus += record.streak_bonus
        sheet.speed_bonus += record.speed_bonus
        sheet.time_bonus += record.time_bonus
        sheet.current_streak = new_streak
        sheet.max_streak = max(sheet.max_streak, new_streak)
        sheet.correct_count = new_correct
        sheet.total_response_ms = new_total_ms
        sheet.answers.append(record)

        if self.has_finished(1) and self.has_finished(2):
            self.state = "complete"
            self.end_time = utcnow()

        return record

    def to_record(self) -> "GameRecord":
        return GameRecord(
            game_id=self.game_id,
            category=self.category,
            player1_initials=self.player1.initials,
            player2_initials=self.player2.initials,
            player1_score=self.player1_total_score,
            player2_score=self.player2_total_score,
            player1_max_streak=self.player1_sheet.max_streak,
            player2_max_streak=self.player2_sheet.max_streak,
            player1_correct=self.player1_sheet.correct_count,
            player2_correct=self.player2_sheet.correct_count,
            is_tie=self.is_tie,
            winner_initials=self.winner_initials,
            start_time=self.start_time,
            end_time=self.end_time,
        )

    @staticmethod
    def _check_slot(player_slot: int) -> None:
        if player_slot not in (1, 2):
            raise InvalidArgumentError(f"Player slot must be 1 or 2, got {player_slot}")


class GameRecord(BaseModel):
    """Read-only summary of a finished game kept for history views."""

    game_id: str
    category: str = "General"
    player1_initials: str
    player2_initials: str
    player1_score: int = 0
    player2_score: int = 0
    player1_max_streak: int = 0
    player2_max_streak: int = 0
    player1_correct: int = 0
    player2_correct: int = 0
    is_tie: bool = False
    winner_initials: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class LeaderboardEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    player_name: str
    score: int
    max_streak: int = 0
    category: str = "General"
    date_played: datetime = Field(default_factory=utcnow)
    wins: int = 0
    losses: int = 0
