from __future__ import annotations

import itertools
from unittest import TestCase

from .bonuses import speed_bonus, streak_bonus, time_bonus
from .config import ScoringSettings
from .errors import InvalidArgumentError, InvalidOperationError
from .models import Player
from .scoring import ScoringService
from .test_models import make_question, make_session


def force_scores(session, p1: int, p2: int) -> None:
    session.player1_sheet.base_score = p1
    session.player2_sheet.base_score = p2
    session.state = "complete"


class DetermineGameResultTests(TestCase):
    def setUp(self) -> None:
        self.service = ScoringService()

    def test_equal_scores_are_a_tie(self):
        session = make_session()
        force_scores(session, 10, 10)
        result = self.service.determine_game_result(session)
        self.assertTrue(result.is_tie)
        self.assertFalse(result.player1_won)
        self.assertFalse(result.player2_won)
        self.assertIsNone(result.winner_initials)

    def test_higher_score_wins(self):
        session = make_session()
        force_scores(session, 15, 9)
        result = self.service.determine_game_result(session)
        self.assertTrue(result.player1_won)
        self.assertFalse(result.is_tie)
        self.assertFalse(result.player2_won)
        self.assertEqual(result.winner_initials, "ABC")

    def test_flags_are_exclusive_and_exhaustive(self):
        for p1, p2 in itertools.product(range(0, 6), repeat=2):
            session = make_session()
            force_scores(session, p1, p2)
            result = self.service.determine_game_result(session)
            flags = [result.is_tie, result.player1_won, result.player2_won]
            self.assertEqual(sum(flags), 1, (p1, p2))
            self.assertEqual(result.is_tie, p1 == p2)

    def test_missing_session(self):
        with self.assertRaises(InvalidArgumentError):
            self.service.determine_game_result(None)

    def test_session_in_progress_is_rejected(self):
        with self.assertRaises(InvalidOperationError):
            self.service.determine_game_result(make_session())


class UpdatePlayerStatsTests(TestCase):
    def setUp(self) -> None:
        self.service = ScoringService()

    def _finished_session(self):
        session = make_session(p1_questions=[make_question()], p2_questions=[make_question()])
        session.record_answer(1, True, 1000)
        session.record_answer(2, False, 1000)
        return session

    def test_applies_score_and_correct_answers(self):
        session = self._finished_session()
        self.service.update_player_stats(session.player1, True, session)
        self.service.update_player_stats(session.player2, False, session)

        self.assertEqual(session.player1.total_score, 2)
        self.assertEqual(session.player1.total_correct_answers, 1)
        self.assertEqual(session.player1.games_won, 1)
        self.assertEqual(session.player2.total_score, 0)
        self.assertEqual(session.player2.games_lost, 1)

    def test_stats_never_decrease(self):
        session = self._finished_session()
        player = session.player2
        before = (player.total_score, player.games_played, player.games_won, player.games_lost)
        self.service.update_player_stats(player, False, session)
        after = (player.total_score, player.games_played, player.games_won, player.games_lost)
        for old, new in zip(before, after):
            self.assertGreaterEqual(new, old)

    def test_missing_arguments(self):
        session = self._finished_session()
        with self.assertRaises(InvalidArgumentError):
            self.service.update_player_stats(None, True, session)
        with self.assertRaises(InvalidArgumentError):
            self.service.update_player_stats(session.player1, True, None)

    def test_player_not_in_game_is_rejected(self):
        session = self._finished_session()
        stranger = Player(initials="QQQ")
        with self.assertRaises(InvalidArgumentError):
            self.service.update_player_stats(stranger, False, session)
        self.assertEqual(stranger.games_played, 0)
        self.assertEqual(session.player2.games_played, 0)

    def test_session_in_progress_is_rejected(self):
        session = make_session()
        with self.assertRaises(InvalidOperationError):
            self.service.update_player_stats(session.player1, False, session)


class FinalizeTests(TestCase):
    def test_finalize_marks_session_scored(self):
        service = ScoringService()
        session = make_session()
        force_scores(session, 4, 8)

        result = service.finalize(session)

        self.assertTrue(result.player2_won)
        self.assertEqual(session.state, "scored")
        self.assertTrue(session.is_complete())
        self.assertIs(session.winner, session.player2)
        self.assertFalse(session.is_tie)
        self.assertEqual(session.player2.games_won, 1)
        self.assertEqual(session.player1.games_lost, 1)

    def test_tie_counts_no_win_or_loss(self):
        service = ScoringService()
        session = make_session()
        force_scores(session, 0, 0)

        result = service.finalize(session)

        self.assertTrue(result.is_tie)
        self.assertTrue(session.is_tie)
        self.assertIsNone(session.winner)
        for player in (session.player1, session.player2):
            self.assertEqual(player.games_played, 1)
            self.assertEqual(player.games_won, 0)
            self.assertEqual(player.games_lost, 0)

    def test_finalize_only_once(self):
        service = ScoringService()
        session = make_session()
        force_scores(session, 1, 2)
        service.finalize(session)

        with self.assertRaises(InvalidOperationError):
            service.finalize(session)
        with self.assertRaises(InvalidOperationError):
            session.record_answer(1, True, 100)
        self.assertEqual(session.player1.games_played, 1)


class BonusCurveTests(TestCase):
    def setUp(self) -> None:
        self.rules = ScoringSettings()

    def test_speed_bonus_is_non_increasing_and_non_negative(self):
        previous = None
        for ms in range(0, 15_000, 250):
            bonus = speed_bonus(ms, self.rules)
            self.assertGreaterEqual(bonus, 0)
            if previous is not None:
                self.assertLessEqual(bonus, previous)
            previous = bonus
        self.assertEqual(speed_bonus(0, self.rules), self.rules.speed_bonus_max)
        self.assertEqual(speed_bonus(self.rules.speed_bonus_window_ms, self.rules), 0)

    def test_streak_bonus_is_capped(self):
        self.assertEqual(streak_bonus(0, self.rules), 0)
        self.assertEqual(streak_bonus(2, self.rules), 2)
        self.assertEqual(streak_bonus(50, self.rules), self.rules.streak_bonus_cap)

    def test_time_bonus_counts_unused_budget(self):
        # 3 questions x 30s budget, 25s used -> 65s left -> 6 whole intervals
        self.assertEqual(time_bonus(25_000, 3, self.rules), 6)
        self.assertEqual(time_bonus(90_000, 3, self.rules), 0)
        self.assertEqual(time_bonus(120_000, 3, self.rules), 0)
