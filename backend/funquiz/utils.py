import time
from datetime import datetime, timezone


def now_ts() -> float:
    return time.time()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def sort_players(players: list) -> list:
    return sorted(players, key=lambda p: (-p.total_score, p.initials))


def sort_leaderboard(entries: list) -> list:
    return sorted(entries, key=lambda e: (-e.score, -e.max_streak, e.player_name))
