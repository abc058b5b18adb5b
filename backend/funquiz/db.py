"""In-process document store used when no table storage is configured.

Collections speak the small slice of the Mongo query language the repositories
need: equality, ``$gt`` and ``$or`` filters, ``$set``/``$inc`` updates and
sorted, limited cursors. Documents are deep-copied on the way in and out so
callers never share state with the store.
"""

from __future__ import annotations

import asyncio
from copy import deepcopy
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

Document = Dict[str, Any]


class ReturnDocument(str, Enum):
    BEFORE = "before"
    AFTER = "after"


def matches(doc: Document, query: Document) -> bool:
    for key, expected in query.items():
        if key == "$or":
            if not any(matches(doc, clause) for clause in expected):
                return False
        elif isinstance(expected, dict):
            unknown = set(expected) - {"$gt"}
            if unknown:
                raise ValueError(f"Unsupported query operator(s): {sorted(unknown)}")
            actual = doc.get(key)
            if actual is None or actual <= expected["$gt"]:
                return False
        elif doc.get(key) != expected:
            return False
    return True


def apply_update(doc: Document, update: Document) -> Document:
    for op, fields in update.items():
        if op == "$set":
            doc.update(deepcopy(fields))
        elif op == "$inc":
            for key, step in fields.items():
                doc[key] = doc.get(key, 0) + step
        else:
            raise ValueError(f"Unsupported update operator: {op}")
    return doc


def sort_documents(docs: List[Document], keys: List[Tuple[str, int]]) -> List[Document]:
    # stable sorts applied last-key-first; missing values go last either way
    for key, direction in reversed(keys):
        descending = direction < 0
        docs.sort(key=lambda d: ((d.get(key) is None) != descending, d.get(key)), reverse=descending)
    return docs


class InMemoryCursor:
    def __init__(self, collection: InMemoryCollection, query: Document):
        self._collection = collection
        self._query = query
        self._sort: List[Tuple[str, int]] = []
        self._limit: Optional[int] = None
        self._pending: Optional[List[Document]] = None

    def sort(self, key: str, direction: int = 1) -> InMemoryCursor:
        self._sort.append((key, direction))
        return self

    def limit(self, count: int) -> InMemoryCursor:
        self._limit = count
        return self

    async def to_list(self) -> List[Document]:
        docs = sort_documents(await self._collection.snapshot(self._query), self._sort)
        return docs if self._limit is None else docs[: self._limit]

    def __aiter__(self) -> InMemoryCursor:
        return self

    async def __anext__(self) -> Document:
        if self._pending is None:
            self._pending = await self.to_list()
        if not self._pending:
            raise StopAsyncIteration
        return self._pending.pop(0)


class InMemoryCollection:
    def __init__(self):
        self._docs: List[Document] = []
        self._lock = asyncio.Lock()

    async def snapshot(self, query: Document) -> List[Document]:
        async with self._lock:
            return [deepcopy(doc) for doc in self._docs if matches(doc, query)]

    def _index_of(self, query: Document) -> Optional[int]:
        return next((i for i, doc in enumerate(self._docs) if matches(doc, query)), None)

    async def find_one(self, query: Document) -> Optional[Document]:
        found = await self.snapshot(query)
        return found[0] if found else None

    def find(self, query: Optional[Document] = None) -> InMemoryCursor:
        return InMemoryCursor(self, query or {})

    async def insert_one(self, document: Document) -> None:
        async with self._lock:
            self._docs.append(deepcopy(document))

    async def update_one(self, query: Document, update: Document, upsert: bool = False) -> None:
        await self.find_one_and_update(query, update, upsert=upsert)

    async def find_one_and_update(
        self,
        query: Document,
        update: Document,
        *,
        upsert: bool = False,
        return_document: ReturnDocument = ReturnDocument.BEFORE,
    ) -> Optional[Document]:
        async with self._lock:
            index = self._index_of(query)
            if index is None:
                if not upsert:
                    return None
                before = None
                after = apply_update(deepcopy(query), update)
                self._docs.append(after)
            else:
                before = self._docs[index]
                after = apply_update(deepcopy(before), update)
                self._docs[index] = after
            chosen = after if return_document == ReturnDocument.AFTER else before
            return deepcopy(chosen)


class InMemoryDatabase:
    """One process-local database: repositories and the event log share it."""

    def __init__(self):
        self.players = InMemoryCollection()
        self.games = InMemoryCollection()
        self.leaderboard = InMemoryCollection()
        self.game_event_counters = InMemoryCollection()
        self.game_events = InMemoryCollection()


db = InMemoryDatabase()
