"""Supabase client and table bundle."""

from functools import lru_cache
from typing import Optional

from supabase import Client, create_client

from receivables.core.config import Settings, get_settings
from receivables.core.exceptions import StoreError
from receivables.core.logging import get_logger
from receivables.database.gateway import SupabaseTableGateway, TableGateway

logger = get_logger(__name__)


@lru_cache()
def get_supabase_client() -> Client:
    """Get the shared Supabase client."""
    settings = get_settings()
    if not settings.supabase_url or not settings.supabase_key:
        raise StoreError("Supabase is not configured", operation="connect")
    return create_client(str(settings.supabase_url), settings.supabase_key)


class Store:
    """The five tables the service reads and writes."""

    def __init__(
        self,
        receivables: TableGateway,
        payables: TableGateway,
        settlements: TableGateway,
        history: TableGateway,
        audit: TableGateway,
    ):
        self.receivables = receivables
        self.payables = payables
        self.settlements = settlements
        self.history = history
        self.audit = audit

    @classmethod
    def from_client(cls, client, settings: Optional[Settings] = None) -> "Store":
        settings = settings or get_settings()
        return cls(
            receivables=SupabaseTableGateway(client, settings.receivables_table),
            payables=SupabaseTableGateway(client, settings.payables_table),
            settlements=SupabaseTableGateway(client, settings.settlements_table),
            history=SupabaseTableGateway(client, settings.collection_history_table),
            audit=SupabaseTableGateway(client, settings.audit_log_table),
        )


@lru_cache()
def get_store() -> Store:
    """Get the store bound to the configured Supabase project."""
    store = Store.from_client(get_supabase_client())
    logger.info("Store initialized", service=get_settings().service_name)
    return store
