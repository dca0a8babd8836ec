"""
Repositories converting store rows to domain models.

Repositories never catch ``StoreError``; lifecycle operations decide whether
a failure is a clean rejection or a partial application.
"""

from typing import Any, Dict, Iterable, List, Optional

from receivables.core.exceptions import NotFoundError
from receivables.core.logging import get_logger
from receivables.database.gateway import TableGateway
from receivables.models import (
    CollectionHistoryEntry,
    PayableTitle,
    ReceivableTitle,
    Settlement,
    SettlementStatus,
)
from receivables.models.base import to_row_value

logger = get_logger(__name__)


def to_patch(values: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a partial update to store values."""
    return {key: to_row_value(value) for key, value in values.items()}


def _unique(ids: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(str(i) for i in ids))


class ReceivableRepository:
    """Data access for the receivable title table."""

    def __init__(self, gateway: TableGateway):
        self.gateway = gateway

    async def get(self, title_id: str) -> Optional[ReceivableTitle]:
        rows = await self.gateway.select({"id": title_id}, limit=1)
        return ReceivableTitle.from_row(rows[0]) if rows else None

    async def require(self, title_id: str) -> ReceivableTitle:
        title = await self.get(title_id)
        if title is None:
            raise NotFoundError("Receivable title", [title_id])
        return title

    async def get_many(self, title_ids: Iterable[str]) -> Dict[str, ReceivableTitle]:
        ids = _unique(title_ids)
        if not ids:
            return {}
        rows = await self.gateway.select({"id": ids})
        return {row["id"]: ReceivableTitle.from_row(row) for row in rows}

    async def require_many(self, title_ids: Iterable[str]) -> Dict[str, ReceivableTitle]:
        """
        Load every id, keyed by id.

        Raises:
            NotFoundError: Listing every id the store does not know
        """
        ids = _unique(title_ids)
        found = await self.get_many(ids)
        missing = [i for i in ids if i not in found]
        if missing:
            raise NotFoundError("Receivable title", missing)
        return found

    async def by_settlement(self, settlement_id: str) -> List[ReceivableTitle]:
        rows = await self.gateway.select({"settlement_id": settlement_id}, order_by="due_date")
        return [ReceivableTitle.from_row(row) for row in rows]

    async def by_client(self, client: str) -> List[ReceivableTitle]:
        rows = await self.gateway.select({"client": client}, order_by="due_date")
        return [ReceivableTitle.from_row(row) for row in rows]

    async def all(self) -> List[ReceivableTitle]:
        rows = await self.gateway.select(order_by="due_date")
        return [ReceivableTitle.from_row(row) for row in rows]

    async def update_ids(self, title_ids: Iterable[str], values: Dict[str, Any]) -> List[Dict[str, Any]]:
        ids = _unique(title_ids)
        if not ids:
            return []
        return await self.gateway.update({"id": ids}, to_patch(values))

    async def upsert(self, titles: List[ReceivableTitle]) -> List[Dict[str, Any]]:
        return await self.gateway.upsert([t.to_row() for t in titles], conflict_key="id")

    async def delete_ids(self, title_ids: Iterable[str]) -> List[Dict[str, Any]]:
        ids = _unique(title_ids)
        if not ids:
            return []
        return await self.gateway.delete({"id": ids})


class PayableRepository:
    """Data access for the payable title table."""

    def __init__(self, gateway: TableGateway):
        self.gateway = gateway

    async def get_many(self, title_ids: Iterable[str]) -> Dict[str, PayableTitle]:
        ids = _unique(title_ids)
        if not ids:
            return {}
        rows = await self.gateway.select({"id": ids})
        return {row["id"]: PayableTitle.from_row(row) for row in rows}

    async def upsert(self, titles: List[PayableTitle]) -> List[Dict[str, Any]]:
        return await self.gateway.upsert([t.to_row() for t in titles], conflict_key="id")


class SettlementRepository:
    """Data access for the settlement table."""

    def __init__(self, gateway: TableGateway):
        self.gateway = gateway

    async def get(self, settlement_id: str) -> Optional[Settlement]:
        rows = await self.gateway.select({"id": settlement_id}, limit=1)
        return Settlement.from_row(rows[0]) if rows else None

    async def require(self, settlement_id: str) -> Settlement:
        settlement = await self.get(settlement_id)
        if settlement is None:
            raise NotFoundError("Settlement", [settlement_id])
        return settlement

    async def insert(self, settlement: Settlement) -> None:
        await self.gateway.insert([settlement.to_row()])

    async def set_status(self, settlement_id: str, status: SettlementStatus) -> None:
        await self.gateway.update({"id": settlement_id}, {"status": status.value})

    async def delete(self, settlement_id: str) -> None:
        await self.gateway.delete({"id": settlement_id})

    async def list(
        self,
        status: Optional[SettlementStatus] = None,
        client: Optional[str] = None,
    ) -> List[Settlement]:
        filters: Dict[str, Any] = {}
        if status:
            filters["status"] = status.value
        if client:
            filters["client"] = client
        rows = await self.gateway.select(filters or None, order_by="created_at", descending=True)
        return [Settlement.from_row(row) for row in rows]


class HistoryRepository:
    """Append-only collection history timeline."""

    def __init__(self, gateway: TableGateway):
        self.gateway = gateway

    async def append(self, entry: CollectionHistoryEntry) -> CollectionHistoryEntry:
        await self.gateway.insert([entry.to_row()])
        return entry

    async def extend(self, entries: List[CollectionHistoryEntry]) -> None:
        if entries:
            await self.gateway.insert([e.to_row() for e in entries])

    async def for_client(self, client: str) -> List[CollectionHistoryEntry]:
        rows = await self.gateway.select({"client": client}, order_by="timestamp", descending=True)
        return [CollectionHistoryEntry.from_row(row) for row in rows]

    async def all_entries(self) -> List[CollectionHistoryEntry]:
        rows = await self.gateway.select(order_by="timestamp", descending=True)
        return [CollectionHistoryEntry.from_row(row) for row in rows]
