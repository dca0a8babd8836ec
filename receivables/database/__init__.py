"""Persistence layer: table gateways and repositories."""

from receivables.database.client import Store, get_store, get_supabase_client
from receivables.database.gateway import SupabaseTableGateway, TableGateway
from receivables.database.repositories import (
    HistoryRepository,
    PayableRepository,
    ReceivableRepository,
    SettlementRepository,
)

__all__ = [
    "HistoryRepository",
    "PayableRepository",
    "ReceivableRepository",
    "SettlementRepository",
    "Store",
    "SupabaseTableGateway",
    "TableGateway",
    "get_store",
    "get_supabase_client",
]
