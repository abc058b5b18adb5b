from __future__ import annotations

import os
from unittest import TestCase, mock

from .config import GameSettings, OpenAISettings, ScoringSettings, Settings, TableStorageSettings, get_section


class SettingsTests(TestCase):
    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)
        self.assertFalse(settings.OPENAI.is_configured)
        self.assertIsNone(settings.TABLE_STORAGE.connection_string)
        self.assertEqual(settings.TABLE_STORAGE.players_table, "PlayerStats")
        self.assertEqual(settings.GAME.questions_per_player, 5)

    def test_nested_sections_read_from_environment(self):
        env = {
            "OPENAI__ENDPOINT": "https://example.openai.azure.com",
            "OPENAI__API_KEY": "secret",
            "SCORING__SPEED_BONUS_MAX": "7",
            "GAME__QUESTIONS_PER_PLAYER": "3",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            settings = Settings(_env_file=None)
        self.assertTrue(settings.OPENAI.is_configured)
        self.assertEqual(settings.SCORING.speed_bonus_max, 7)
        self.assertEqual(settings.GAME.questions_per_player, 3)


class GetSectionTests(TestCase):
    def setUp(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            self.settings = Settings(_env_file=None)

    def test_known_sections_map_to_their_types(self):
        expected = {
            "openai": OpenAISettings,
            "table_storage": TableStorageSettings,
            "scoring": ScoringSettings,
            "GAME": GameSettings,
        }
        for key, section_type in expected.items():
            self.assertIsInstance(get_section(key, self.settings), section_type)

    def test_unknown_section(self):
        with self.assertRaises(KeyError):
            get_section("OpenAISettings", self.settings)
