"""
In-memory Backend implementation.
Used by the test suite and by BACKEND_MODE=memory for local runs.
"""

import copy
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import structlog

from models.records import ChangeType
from services.backend import BackendError
from services.change_feed import ChangeCallback, ChangeFeed

logger = structlog.get_logger(__name__)

RpcFunction = Callable[["InMemoryBackend", dict[str, Any]], Awaitable[Any]]


async def detect_image_duplicates(backend: "InMemoryBackend", params: dict[str, Any]) -> list[dict[str, Any]]:
    """Exact-hash matches stored by other agents."""
    threshold = params.get("p_similarity_threshold", 0.95)
    matches = []
    for row in backend.tables["property_image_hashes"]:
        if row.get("image_hash") != params.get("p_image_hash"):
            continue
        if row.get("agent_id") == params.get("p_agent_id"):
            continue
        score = float(row.get("similarity_score", 1.0))
        if score >= threshold:
            matches.append(
                {
                    "property_id": row["property_id"],
                    "agent_id": row["agent_id"],
                    "image_hash": row["image_hash"],
                    "similarity_score": score,
                    "created_at": row.get("created_at"),
                }
            )
    return matches


class InMemoryBackend:
    """Dict-of-lists backend with the same contract as SupabaseBackend."""

    def __init__(self, change_feed: Optional[ChangeFeed] = None) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.change_feed = change_feed or ChangeFeed()
        self.rpc_functions: dict[str, RpcFunction] = {
            "detect_image_duplicates": detect_image_duplicates,
        }
        # table -> exception raised on the next write to it
        self.fail_writes: dict[str, Exception] = {}

    def seed(self, table: str, *rows: dict[str, Any]) -> None:
        """Load rows without publishing change events."""
        for row in rows:
            stored = dict(row)
            stored.setdefault("id", str(uuid.uuid4()))
            self.tables[table].append(stored)

    @staticmethod
    def _matches(row: dict[str, Any], filters: Optional[dict[str, Any]]) -> bool:
        return all(row.get(column) == value for column, value in (filters or {}).items())

    def _check_write(self, table: str) -> None:
        error = self.fail_writes.get(table)
        if error is not None:
            raise error

    async def select_one(self, table: str, filters: dict[str, Any]) -> Optional[dict[str, Any]]:
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None

    async def select(
        self,
        table: str,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        rows = [copy.deepcopy(row) for row in self.tables[table] if self._matches(row, filters)]
        if order_by:
            rows.sort(key=lambda row: str(row.get(order_by) or ""), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        self._check_write(table)
        now = datetime.utcnow().isoformat()
        stored = {"id": str(uuid.uuid4()), "created_at": now, **record}
        self.tables[table].append(stored)

        created = copy.deepcopy(stored)
        await self.change_feed.publish(table, ChangeType.INSERT, created)
        return created

    async def update(self, table: str, filters: dict[str, Any], values: dict[str, Any]) -> list[dict[str, Any]]:
        if not filters:
            raise BackendError(f"refusing unfiltered update of {table}", table=table)
        self._check_write(table)

        updated = []
        for row in self.tables[table]:
            if self._matches(row, filters):
                row.update(values)
                updated.append(copy.deepcopy(row))

        for row in updated:
            await self.change_feed.publish(table, ChangeType.UPDATE, row)
        return updated

    async def rpc(self, function: str, params: dict[str, Any]) -> Any:
        handler = self.rpc_functions.get(function)
        if handler is None:
            raise BackendError(f"unknown procedure {function}", status_code=404)
        return await handler(self, params)

    def subscribe(self, table: str, callback: ChangeCallback) -> Callable[[], None]:
        return self.change_feed.subscribe(table, callback)
