from __future__ import annotations

from functools import lru_cache
from typing import Dict, Optional, Type

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OpenAISettings(BaseModel):
    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    deployment_name: str = "gpt-35-turbo"
    api_version: str = "2024-08-01-preview"
    temperature: float = 0.7
    timeout_seconds: float = 30.0

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint and self.api_key)


class TableStorageSettings(BaseModel):
    connection_string: Optional[str] = None
    players_table: str = "PlayerStats"
    games_table: str = "GameSessions"
    leaderboard_table: str = "Leaderboard"


class ScoringSettings(BaseModel):
    """Tunable bonus curve.

    Base points come from question difficulty and are not configurable.
    """

    # streak bonus grows by one step per answer already in the streak
    streak_bonus_step: int = Field(default=1, ge=0)
    streak_bonus_cap: int = Field(default=5, ge=0)

    # answers faster than the window earn up to speed_bonus_max points
    speed_bonus_window_ms: int = Field(default=10_000, gt=0)
    speed_bonus_max: int = Field(default=3, ge=0)

    question_time_limit_ms: int = Field(default=30_000, gt=0)
    # one point per full interval left over from the round budget
    time_bonus_interval_ms: int = Field(default=10_000, gt=0)


class GameSettings(BaseModel):
    questions_per_player: int = Field(default=5, ge=1, le=50)
    default_category: str = "General"
    # live sessions not finished within this window are dropped
    session_timeout_minutes: int = Field(default=120, ge=1)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:8080"
    CORS_ORIGIN_REGEX: Optional[str] = None
    LOG_LEVEL: str = "INFO"

    OPENAI: OpenAISettings = Field(default_factory=OpenAISettings)
    TABLE_STORAGE: TableStorageSettings = Field(default_factory=TableStorageSettings)
    SCORING: ScoringSettings = Field(default_factory=ScoringSettings)
    GAME: GameSettings = Field(default_factory=GameSettings)


# configuration key -> (settings attribute, section type)
SECTIONS: Dict[str, tuple[str, Type[BaseModel]]] = {
    "openai": ("OPENAI", OpenAISettings),
    "table_storage": ("TABLE_STORAGE", TableStorageSettings),
    "scoring": ("SCORING", ScoringSettings),
    "game": ("GAME", GameSettings),
}


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_section(name: str, settings: Settings | None = None) -> BaseModel:
    """Return the typed settings section registered under ``name``."""

    try:
        attribute, section_type = SECTIONS[name.lower()]
    except KeyError:
        raise KeyError(f"Unknown configuration section: {name}") from None

    section = getattr(settings or get_settings(), attribute)
    if not isinstance(section, section_type):
        raise TypeError(f"Section {name} is not a {section_type.__name__}")
    return section
