"""
Persistence collaborator: one gateway per store table.

The store offers single-call select/insert/update/upsert/delete with no
multi-statement transactions. Filters map a column to a value (equality) or
to a list of values (membership).
"""

import asyncio
from typing import Any, Dict, List, Optional, Protocol

from receivables.core.exceptions import StoreError
from receivables.core.logging import get_logger

logger = get_logger(__name__)

Row = Dict[str, Any]
Filters = Dict[str, Any]


class TableGateway(Protocol):
    """Operations available on one store table."""

    table: str

    async def select(
        self,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        ...

    async def insert(self, rows: List[Row]) -> List[Row]:
        ...

    async def update(self, filters: Filters, patch: Row) -> List[Row]:
        ...

    async def upsert(self, rows: List[Row], conflict_key: str = "id") -> List[Row]:
        ...

    async def delete(self, filters: Filters) -> List[Row]:
        ...


class SupabaseTableGateway:
    """
    ``TableGateway`` backed by a supabase-py client.

    The client is synchronous; each call runs in a worker thread so a slow
    request suspends the caller instead of blocking the event loop. Every
    client exception is reported as ``StoreError``.
    """

    def __init__(self, client, table: str):
        self.client = client
        self.table = table

    def _apply_filters(self, query, filters: Optional[Filters]):
        for column, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set)):
                query = query.in_(column, list(value))
            else:
                query = query.eq(column, value)
        return query

    async def _execute(self, operation: str, query) -> List[Row]:
        try:
            response = await asyncio.to_thread(query.execute)
        except Exception as e:
            logger.error(
                "Store call failed",
                table=self.table,
                store_operation=operation,
                error=str(e),
            )
            raise StoreError(
                f"{operation} on '{self.table}' failed: {e}",
                operation=operation,
                table=self.table,
            ) from e
        return response.data or []

    async def select(
        self,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        if filters and any(isinstance(v, (list, tuple, set)) and not v for v in filters.values()):
            return []
        query = self._apply_filters(self.client.table(self.table).select("*"), filters)
        if order_by:
            query = query.order(order_by, desc=descending)
        if limit:
            query = query.limit(limit)
        return await self._execute("select", query)

    async def insert(self, rows: List[Row]) -> List[Row]:
        if not rows:
            return []
        return await self._execute("insert", self.client.table(self.table).insert(rows))

    async def update(self, filters: Filters, patch: Row) -> List[Row]:
        if not filters:
            raise ValueError("update requires at least one filter")
        query = self._apply_filters(self.client.table(self.table).update(patch), filters)
        return await self._execute("update", query)

    async def upsert(self, rows: List[Row], conflict_key: str = "id") -> List[Row]:
        if not rows:
            return []
        query = self.client.table(self.table).upsert(rows, on_conflict=conflict_key)
        return await self._execute("upsert", query)

    async def delete(self, filters: Filters) -> List[Row]:
        if not filters:
            raise ValueError("delete requires at least one filter")
        query = self._apply_filters(self.client.table(self.table).delete(), filters)
        return await self._execute("delete", query)
