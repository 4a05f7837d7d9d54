"""
FanZone - Data Repository

The data capability consumed by business services, and an in-process
implementation of it. Tables are plain dicts keyed by record id; records
are copied on the way in and out so callers never share state with the
store.
"""

from __future__ import annotations

import copy
import itertools
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

from core.errors import RepositoryError
from observability.logging import get_logger

Record = Dict[str, Any]


@runtime_checkable
class DataRepository(Protocol):
    """Repository capability: table CRUD, filtered queries and named RPCs."""

    async def initialize(self) -> bool: ...

    async def create(self, table: str, data: Record) -> Record: ...

    async def read(self, table: str, record_id: Any) -> Optional[Record]: ...

    async def update(self, table: str, record_id: Any, updates: Record) -> Record: ...

    async def delete(self, table: str, record_id: Any) -> bool: ...

    async def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Any: ...

    async def execute(self, rpc_name: str, params: Optional[Dict[str, Any]] = None) -> Any: ...


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sort_key(value: Any) -> tuple:
    # Missing values sort last
    return (value is None, value if value is not None else 0)


class MemoryRepository:
    """
    In-memory DataRepository.

    ``reachable=False`` models a backing store that cannot be contacted:
    initialize() raises and every operation fails until it succeeds.

    Query options:
        single      return the first match or None instead of a list
        limit       cap the number of results
        order_by    sort by this field
        descending  reverse the sort
    """

    def __init__(self, seed: Optional[Dict[str, List[Record]]] = None, reachable: bool = True):
        self.logger = get_logger("fanzone.repositories.memory")
        self.reachable = reachable
        self._initialized = False
        self._tables: Dict[str, Dict[Any, Record]] = {}
        self._ids = itertools.count(1)
        self._rpcs: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            "purchase_gift": self._purchase_gift,
        }

        for table, rows in (seed or {}).items():
            for row in rows:
                record = copy.deepcopy(row)
                record.setdefault("id", self._next_id(table))
                self._table(table)[record["id"]] = record

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> bool:
        if not self.reachable:
            raise RepositoryError(
                "Database connection failed: repository is unreachable",
                operation="initialize",
            )
        self._initialized = True
        self.logger.info("Repository initialized", tables=sorted(self._tables))
        return True

    def _ensure_ready(self, operation: str, table: Optional[str] = None) -> None:
        if not self._initialized:
            raise RepositoryError(
                "Database repository is not initialized",
                table=table,
                operation=operation,
            )

    def _table(self, table: str) -> Dict[Any, Record]:
        return self._tables.setdefault(table, {})

    def _next_id(self, table: str) -> str:
        return f"{table}_{next(self._ids)}"

    # -------------------------------------------------------------------------
    # CRUD
    # -------------------------------------------------------------------------

    async def create(self, table: str, data: Record) -> Record:
        self._ensure_ready("create", table)
        record = copy.deepcopy(data)
        record.setdefault("id", self._next_id(table))
        record.setdefault("created_at", _now())
        self._table(table)[record["id"]] = record
        return copy.deepcopy(record)

    async def read(self, table: str, record_id: Any) -> Optional[Record]:
        self._ensure_ready("read", table)
        record = self._tables.get(table, {}).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def update(self, table: str, record_id: Any, updates: Record) -> Record:
        self._ensure_ready("update", table)
        record = self._tables.get(table, {}).get(record_id)
        if record is None:
            raise RepositoryError("Record not found", table=table, operation="update")
        record.update(copy.deepcopy(updates))
        return copy.deepcopy(record)

    async def delete(self, table: str, record_id: Any) -> bool:
        self._ensure_ready("delete", table)
        return self._tables.get(table, {}).pop(record_id, None) is not None

    async def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Any:
        self._ensure_ready("query", table)
        options = options or {}

        results = [
            record for record in self._tables.get(table, {}).values()
            if all(record.get(key) == value for key, value in (filters or {}).items())
        ]

        order_by = options.get("order_by")
        if order_by:
            results.sort(
                key=lambda r: _sort_key(r.get(order_by)),
                reverse=bool(options.get("descending")),
            )

        limit = options.get("limit")
        if limit:
            results = results[:limit]

        results = copy.deepcopy(results)
        if options.get("single"):
            return results[0] if results else None
        return results

    # -------------------------------------------------------------------------
    # RPC
    # -------------------------------------------------------------------------

    async def execute(self, rpc_name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        self._ensure_ready("execute")
        rpc = self._rpcs.get(rpc_name)
        if rpc is None:
            raise RepositoryError(f"Unknown repository function: {rpc_name}", operation="execute")
        self.logger.debug("Executing repository function", rpc=rpc_name)
        return rpc(params or {})

    def _purchase_gift(self, params: Dict[str, Any]) -> Dict[str, Any]:
        users = self._tables.get("users", {})
        gifts = self._tables.get("gifts", {})

        user = next(
            (u for u in users.values() if u.get("telegram_id") == params.get("p_user_telegram_id")),
            None,
        )
        if user is None:
            return {"success": False, "message": "User not found"}

        gift = gifts.get(params.get("p_gift_id"))
        if gift is None or not gift.get("is_active", True):
            return {"success": False, "message": "Gift not found"}

        max_supply = gift.get("max_supply")
        if max_supply is not None and gift.get("current_supply", 0) >= max_supply:
            return {"success": False, "message": "Gift is sold out"}

        price = gift.get("price_points", 0)
        if user.get("points", 0) < price:
            return {"success": False, "message": "Insufficient points"}

        user["points"] = user.get("points", 0) - price
        user["total_gifts"] = user.get("total_gifts", 0) + 1
        gift["current_supply"] = gift.get("current_supply", 0) + 1

        user_gifts = self._table("user_gifts")
        row_id = self._next_id("user_gifts")
        user_gifts[row_id] = {
            "id": row_id,
            "user_id": user["id"],
            "gift_id": gift["id"],
            "price_paid": price,
            "obtained_at": _now(),
        }

        return {
            "success": True,
            "message": "Gift purchased successfully",
            "gift_name": gift.get("name"),
            "price_paid": price,
            "remaining_points": user["points"],
        }
