from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type, TypeVar

import structlog
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from azure.data.tables import TableClient, TableServiceClient, UpdateMode
from pydantic import BaseModel

from .config import Settings, TableStorageSettings
from .db import InMemoryCollection, InMemoryDatabase
from .errors import InvalidArgumentError
from .models import GameRecord, LeaderboardEntry, Player
from .utils import sort_leaderboard, sort_players

logger = structlog.get_logger(__name__)

PLAYER_PARTITION = "PLAYER"
GAME_PARTITION = "GAME"

M = TypeVar("M", bound=BaseModel)


def normalise_initials(initials: str) -> str:
    value = (initials or "").strip().upper()
    if not value:
        raise InvalidArgumentError("Player initials cannot be empty")
    return value


class PlayerRepository:
    async def get(self, initials: str) -> Optional[Player]:
        raise NotImplementedError

    async def update(self, player: Player) -> Player:
        raise NotImplementedError

    async def list_all(self) -> List[Player]:
        raise NotImplementedError

    async def get_or_create(self, initials: str) -> Player:
        initials = normalise_initials(initials)
        player = await self.get(initials)
        if player is not None:
            return player
        player = Player(initials=initials)
        await self.update(player)
        logger.info("player_created", initials=player.initials)
        return player

    async def top(self, count: int = 10) -> List[Player]:
        return sort_players(await self.list_all())[:count]


class GameHistoryRepository:
    async def save(self, record: GameRecord) -> GameRecord:
        raise NotImplementedError

    async def get(self, game_id: str) -> Optional[GameRecord]:
        raise NotImplementedError

    async def recent(self, initials: Optional[str] = None, count: int = 10) -> List[GameRecord]:
        raise NotImplementedError


class LeaderboardRepository:
    async def add(self, entry: LeaderboardEntry) -> LeaderboardEntry:
        raise NotImplementedError

    async def top(self, category: str = "General", count: int = 10) -> List[LeaderboardEntry]:
        raise NotImplementedError


# In-memory backends


class InMemoryPlayerRepository(PlayerRepository):
    def __init__(self, collection: InMemoryCollection):
        self.collection = collection

    async def get(self, initials: str) -> Optional[Player]:
        doc = await self.collection.find_one({"initials": normalise_initials(initials)})
        return Player(**doc) if doc else None

    async def update(self, player: Player) -> Player:
        await self.collection.update_one(
            {"initials": player.initials},
            {"$set": player.model_dump()},
            upsert=True,
        )
        return player

    async def list_all(self) -> List[Player]:
        return [Player(**doc) async for doc in self.collection.find({})]


class InMemoryGameHistoryRepository(GameHistoryRepository):
    def __init__(self, collection: InMemoryCollection):
        self.collection = collection

    async def save(self, record: GameRecord) -> GameRecord:
        await self.collection.update_one(
            {"game_id": record.game_id},
            {"$set": record.model_dump()},
            upsert=True,
        )
        return record

    async def get(self, game_id: str) -> Optional[GameRecord]:
        doc = await self.collection.find_one({"game_id": game_id})
        return GameRecord(**doc) if doc else None

    async def recent(self, initials: Optional[str] = None, count: int = 10) -> List[GameRecord]:
        query: Dict[str, Any] = {}
        if initials:
            initials = normalise_initials(initials)
            query["$or"] = [{"player1_initials": initials}, {"player2_initials": initials}]
        cursor = self.collection.find(query).sort("end_time", -1).limit(count)
        return [GameRecord(**doc) async for doc in cursor]


class InMemoryLeaderboardRepository(LeaderboardRepository):
    def __init__(self, collection: InMemoryCollection):
        self.collection = collection

    async def add(self, entry: LeaderboardEntry) -> LeaderboardEntry:
        await self.collection.insert_one(entry.model_dump())
        return entry

    async def top(self, category: str = "General", count: int = 10) -> List[LeaderboardEntry]:
        docs = await self.collection.find({"category": category}).to_list()
        return sort_leaderboard([LeaderboardEntry(**doc) for doc in docs])[:count]


# Azure Table Storage backends


class TableGateway:
    """Lazily creates its table and runs blocking SDK calls off the event loop."""

    def __init__(self, service: TableServiceClient, table_name: str):
        self._service = service
        self.table_name = table_name
        self._client: Optional[TableClient] = None

    async def client(self) -> TableClient:
        if self._client is None:
            try:
                self._client = await asyncio.to_thread(self._service.create_table_if_not_exists, self.table_name)
            except HttpResponseError:
                logger.error("table_init_failed", table=self.table_name)
                raise
            logger.info("table_ready", table=self.table_name)
        return self._client

    async def get(self, partition_key: str, row_key: str) -> Optional[Dict[str, Any]]:
        table = await self.client()
        try:
            return await asyncio.to_thread(table.get_entity, partition_key=partition_key, row_key=row_key)
        except ResourceNotFoundError:
            return None

    async def upsert(self, entity: Dict[str, Any]) -> None:
        table = await self.client()
        try:
            await asyncio.to_thread(table.upsert_entity, entity, mode=UpdateMode.REPLACE)
        except HttpResponseError:
            logger.error("table_upsert_failed", table=self.table_name, row_key=entity.get("RowKey"))
            raise

    async def create(self, entity: Dict[str, Any]) -> None:
        table = await self.client()
        await asyncio.to_thread(table.create_entity, entity)

    async def query(self, query_filter: str, parameters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        table = await self.client()

        def _run():
            return list(table.query_entities(query_filter, parameters=parameters))

        return await asyncio.to_thread(_run)


def to_entity(model: BaseModel, partition_key: str, row_key: str) -> Dict[str, Any]:
    entity = {k: v for k, v in model.model_dump().items() if v is not None}
    entity["PartitionKey"] = partition_key
    entity["RowKey"] = row_key
    return entity


def from_entity(model_type: Type[M], entity: Dict[str, Any]) -> M:
    data = {k: v for k, v in dict(entity).items() if k not in ("PartitionKey", "RowKey")}
    return model_type.model_validate(data)


class TablePlayerRepository(PlayerRepository):
    def __init__(self, gateway: TableGateway):
        self.gateway = gateway

    async def get(self, initials: str) -> Optional[Player]:
        entity = await self.gateway.get(PLAYER_PARTITION, normalise_initials(initials))
        return from_entity(Player, entity) if entity else None

    async def update(self, player: Player) -> Player:
        await self.gateway.upsert(to_entity(player, PLAYER_PARTITION, player.initials))
        return player

    async def list_all(self) -> List[Player]:
        players: List[Player] = []
        for entity in await self.gateway.query("PartitionKey eq @pk", {"pk": PLAYER_PARTITION}):
            try:
                players.append(from_entity(Player, entity))
            except ValueError:
                # one unreadable row should not take the leaderboard down
                logger.warning("player_entity_skipped", row_key=entity.get("RowKey"))
        return players


class TableGameHistoryRepository(GameHistoryRepository):
    def __init__(self, gateway: TableGateway):
        self.gateway = gateway

    async def save(self, record: GameRecord) -> GameRecord:
        await self.gateway.upsert(to_entity(record, GAME_PARTITION, record.game_id))
        return record

    async def get(self, game_id: str) -> Optional[GameRecord]:
        entity = await self.gateway.get(GAME_PARTITION, game_id)
        return from_entity(GameRecord, entity) if entity else None

    async def recent(self, initials: Optional[str] = None, count: int = 10) -> List[GameRecord]:
        query_filter = "PartitionKey eq @pk"
        parameters: Dict[str, Any] = {"pk": GAME_PARTITION}
        if initials:
            query_filter += " and (player1_initials eq @initials or player2_initials eq @initials)"
            parameters["initials"] = normalise_initials(initials)

        records = [from_entity(GameRecord, e) for e in await self.gateway.query(query_filter, parameters)]
        # the table service cannot order by a property, sort here
        records.sort(key=lambda r: (r.end_time is not None, r.end_time), reverse=True)
        return records[:count]


class TableLeaderboardRepository(LeaderboardRepository):
    def __init__(self, gateway: TableGateway):
        self.gateway = gateway

    async def add(self, entry: LeaderboardEntry) -> LeaderboardEntry:
        await self.gateway.create(to_entity(entry, entry.category, entry.id))
        return entry

    async def top(self, category: str = "General", count: int = 10) -> List[LeaderboardEntry]:
        entities = await self.gateway.query("PartitionKey eq @category", {"category": category})
        return sort_leaderboard([from_entity(LeaderboardEntry, e) for e in entities])[:count]


@dataclass
class Repositories:
    players: PlayerRepository
    games: GameHistoryRepository
    leaderboard: LeaderboardRepository


def build_table_repositories(service: TableServiceClient, tables: TableStorageSettings) -> Repositories:
    return Repositories(
        players=TablePlayerRepository(TableGateway(service, tables.players_table)),
        games=TableGameHistoryRepository(TableGateway(service, tables.games_table)),
        leaderboard=TableLeaderboardRepository(TableGateway(service, tables.leaderboard_table)),
    )


def build_memory_repositories(database: Optional[InMemoryDatabase] = None) -> Repositories:
    database = database or InMemoryDatabase()
    return Repositories(
        players=InMemoryPlayerRepository(database.players),
        games=InMemoryGameHistoryRepository(database.games),
        leaderboard=InMemoryLeaderboardRepository(database.leaderboard),
    )


def build_repositories(settings: Settings, database: Optional[InMemoryDatabase] = None) -> Repositories:
    tables = settings.TABLE_STORAGE
    if tables.connection_string:
        service = TableServiceClient.from_connection_string(tables.connection_string)
        return build_table_repositories(service, tables)
    logger.info("table_storage_not_configured_using_memory")
    return build_memory_repositories(database)
