from __future__ import annotations

from typing import Any, List, Optional

from .db import InMemoryDatabase, ReturnDocument, db
from .utils import now_ts


class EventStore:
    """Sequenced per-game event log that clients poll over HTTP."""

    def __init__(self, database: Optional[InMemoryDatabase] = None):
        database = database or db
        self.counters_collection = database.game_event_counters
        self.events_collection = database.game_events

    async def append(self, game_id: str, payload: dict[str, Any]) -> int:
        """Store a new event for a game and return its sequence number."""

        counter_doc = await self.counters_collection.find_one_and_update(
            {"_id": game_id},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        seq = int(counter_doc["seq"])

        await self.events_collection.insert_one(
            {
                "game_id": game_id,
                "seq": seq,
                "timestamp": now_ts(),
                "payload": payload,
            }
        )
        return seq

    async def list(self, game_id: str, after: int | None = None, limit: int = 200) -> List[dict[str, Any]]:
        """Return events for a game that occur after the given sequence."""

        query: dict[str, Any] = {"game_id": game_id}
        if after is not None:
            query["seq"] = {"$gt": after}

        cursor = self.events_collection.find(query).sort("seq", 1).limit(limit)

        events: List[dict[str, Any]] = []
        async for doc in cursor:
            events.append(
                {
                    "seq": doc["seq"],
                    "timestamp": doc.get("timestamp"),
                    "payload": doc.get("payload", {}),
                }
            )
        return events

