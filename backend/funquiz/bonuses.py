"""Bonus curves applied on top of a question's base points."""

from __future__ import annotations

from .config import ScoringSettings


def streak_bonus(previous_streak: int, rules: ScoringSettings) -> int:
    """Bonus for a correct answer that extends a streak of ``previous_streak``."""

    if previous_streak <= 0:
        return 0
    return min(previous_streak * rules.streak_bonus_step, rules.streak_bonus_cap)


def speed_bonus(response_time_ms: int, rules: ScoringSettings) -> int:
    window = rules.speed_bonus_window_ms
    if response_time_ms >= window:
        return 0
    return rules.speed_bonus_max * (window - max(response_time_ms, 0)) // window


def time_bonus(total_response_ms: int, question_count: int, rules: ScoringSettings) -> int:
    """One point per full interval left unused from the round's time budget."""

    budget = question_count * rules.question_time_limit_ms
    remaining = budget - total_response_ms
    if remaining <= 0:
        return 0
    return remaining // rules.time_bonus_interval_ms
