from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest import IsolatedAsyncioTestCase, TestCase

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from . import storage
from .config import Settings, TableStorageSettings
from .db import InMemoryDatabase
from .errors import InvalidArgumentError
from .models import GameRecord, LeaderboardEntry

DEV_CONNECTION_STRING = (
    "DefaultEndpointsProtocol=https;AccountName=devaccount;AccountKey=ZGV2a2V5;EndpointSuffix=core.windows.net"
)


def _record(game_id: str, p1: str, p2: str, minutes_ago: int) -> GameRecord:
    return GameRecord(
        game_id=game_id,
        player1_initials=p1,
        player2_initials=p2,
        end_time=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
    )


class _FakeTableClient:
    def __init__(self):
        self.entities: dict[tuple[str, str], dict] = {}
        self.queries: list[tuple[str, dict | None]] = []

    def get_entity(self, partition_key: str, row_key: str):
        try:
            return dict(self.entities[(partition_key, row_key)])
        except KeyError:
            raise ResourceNotFoundError(message="not found") from None

    def upsert_entity(self, entity, mode=None):
        self.entities[(entity["PartitionKey"], entity["RowKey"])] = dict(entity)

    def create_entity(self, entity):
        self.entities[(entity["PartitionKey"], entity["RowKey"])] = dict(entity)

    def query_entities(self, query_filter, parameters=None):
        # only partition filtering is modelled, enough for these tests
        self.queries.append((query_filter, parameters))
        partition = next(iter(parameters.values()))
        return iter(dict(e) for (pk, _), e in self.entities.items() if pk == partition)


class _FakeTableService:
    def __init__(self, *, creation_exception: Exception | None = None):
        self.tables: dict[str, _FakeTableClient] = {}
        self.create_calls: list[str] = []
        self._creation_exception = creation_exception

    def create_table_if_not_exists(self, table_name: str) -> _FakeTableClient:
        self.create_calls.append(table_name)
        if self._creation_exception:
            raise self._creation_exception
        return self.tables.setdefault(table_name, _FakeTableClient())


class InMemoryRepositoryTests(IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.repos = storage.build_memory_repositories(InMemoryDatabase())

    async def test_get_or_create_player_is_stable(self):
        created = await self.repos.players.get_or_create("abc")
        again = await self.repos.players.get_or_create("ABC")
        self.assertEqual(created.initials, "ABC")
        self.assertEqual(created.id, again.id)
        self.assertEqual(len(await self.repos.players.list_all()), 1)

    async def test_empty_initials_are_rejected(self):
        with self.assertRaises(InvalidArgumentError):
            await self.repos.players.get_or_create("  ")

    async def test_update_and_top_players(self):
        for initials, score in (("AAA", 5), ("BBB", 20), ("CCC", 12)):
            player = await self.repos.players.get_or_create(initials)
            player.update_stats(score, 1, is_winner=False)
            await self.repos.players.update(player)

        top = await self.repos.players.top(2)
        self.assertEqual([p.initials for p in top], ["BBB", "CCC"])
        self.assertEqual((await self.repos.players.get("bbb")).total_score, 20)

    async def test_recent_games_newest_first_and_filtered(self):
        await self.repos.games.save(_record("g1", "AAA", "BBB", minutes_ago=30))
        await self.repos.games.save(_record("g2", "CCC", "AAA", minutes_ago=5))
        await self.repos.games.save(_record("g3", "BBB", "CCC", minutes_ago=1))

        self.assertEqual([r.game_id for r in await self.repos.games.recent()], ["g3", "g2", "g1"])
        self.assertEqual([r.game_id for r in await self.repos.games.recent("aaa")], ["g2", "g1"])
        self.assertEqual([r.game_id for r in await self.repos.games.recent(count=1)], ["g3"])
        self.assertEqual((await self.repos.games.get("g2")).player1_initials, "CCC")
        self.assertIsNone(await self.repos.games.get("missing"))

    async def test_leaderboard_is_per_category_and_ranked(self):
        await self.repos.leaderboard.add(LeaderboardEntry(player_name="AAA", score=10, category="Science"))
        await self.repos.leaderboard.add(LeaderboardEntry(player_name="BBB", score=14, category="Science"))
        await self.repos.leaderboard.add(LeaderboardEntry(player_name="CCC", score=99, category="History"))

        top = await self.repos.leaderboard.top("Science")
        self.assertEqual([e.player_name for e in top], ["BBB", "AAA"])


class TableRepositoryTests(IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.service = _FakeTableService()
        self.repos = storage.build_table_repositories(self.service, TableStorageSettings())

    async def test_player_round_trip_through_table(self):
        player = await self.repos.players.get_or_create("abc")
        player.update_stats(9, 3, is_winner=True)
        await self.repos.players.update(player)

        table = self.service.tables["PlayerStats"]
        entity = table.entities[("PLAYER", "ABC")]
        self.assertEqual(entity["total_score"], 9)

        loaded = await self.repos.players.get("ABC")
        self.assertEqual(loaded.games_won, 1)
        self.assertEqual(loaded.total_correct_answers, 3)

    async def test_table_is_created_once(self):
        await self.repos.players.get_or_create("AAA")
        await self.repos.players.get_or_create("BBB")
        self.assertEqual(self.service.create_calls, ["PlayerStats"])

    async def test_unreadable_player_rows_are_skipped(self):
        await self.repos.players.get_or_create("AAA")
        table = self.service.tables["PlayerStats"]
        table.entities[("PLAYER", "??")] = {"PartitionKey": "PLAYER", "RowKey": "??", "initials": "??"}

        players = await self.repos.players.list_all()
        self.assertEqual([p.initials for p in players], ["AAA"])

    async def test_recent_games_filter_and_order(self):
        await self.repos.games.save(_record("g1", "AAA", "BBB", minutes_ago=10))
        await self.repos.games.save(_record("g2", "AAA", "CCC", minutes_ago=2))

        recent = await self.repos.games.recent("aaa")
        self.assertEqual([r.game_id for r in recent], ["g2", "g1"])
        query_filter, parameters = self.service.tables["GameSessions"].queries[-1]
        self.assertIn("player1_initials eq @initials", query_filter)
        self.assertEqual(parameters["initials"], "AAA")

    async def test_leaderboard_partitions_by_category(self):
        entry = await self.repos.leaderboard.add(LeaderboardEntry(player_name="AAA", score=7, category="Sports"))
        table = self.service.tables["Leaderboard"]
        self.assertIn(("Sports", entry.id), table.entities)
        self.assertEqual([e.score for e in await self.repos.leaderboard.top("Sports")], [7])

    async def test_table_creation_failure_propagates(self):
        service = _FakeTableService(creation_exception=HttpResponseError(message="forbidden"))
        repos = storage.build_table_repositories(service, TableStorageSettings())
        with self.assertRaises(HttpResponseError):
            await repos.players.get("AAA")


class BuildRepositoriesTests(TestCase):
    def test_memory_without_connection_string(self):
        repos = storage.build_repositories(Settings(_env_file=None))
        self.assertIsInstance(repos.players, storage.InMemoryPlayerRepository)

    def test_tables_with_connection_string(self):
        settings = Settings(
            _env_file=None,
            TABLE_STORAGE=TableStorageSettings(connection_string=DEV_CONNECTION_STRING),
        )
        repos = storage.build_repositories(settings)
        self.assertIsInstance(repos.players, storage.TablePlayerRepository)
        self.assertIsInstance(repos.leaderboard, storage.TableLeaderboardRepository)
