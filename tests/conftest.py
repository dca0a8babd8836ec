"""
Pytest configuration and fixtures for the Receivables Lifecycle Service.
"""
from datetime import date
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from fakes import InMemoryStore
from receivables.core.config import Settings
from receivables.core.locks import OperationGuard
from receivables.models import CollectionState, ReceivableTitle, TitleStatus
from receivables.services.audit_service import AuditLogService
from receivables.services.debtor_service import DebtorService
from receivables.services.liquidation_service import LiquidationService
from receivables.services.notary_service import NotaryService
from receivables.services.reconciliation_service import ReconciliationService
from receivables.services.settlement_service import SettlementService

TODAY = date(2024, 1, 5)


@pytest.fixture
def today() -> date:
    """Fixed business date used by every service fixture."""
    return TODAY


@pytest.fixture
def settings() -> Settings:
    return Settings(supabase_url=None, supabase_key=None, document_service_url=None)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def guard() -> OperationGuard:
    return OperationGuard()


@pytest.fixture
def audit(store) -> AuditLogService:
    return AuditLogService(store)


@pytest.fixture
def settlement_service(store, audit, guard, settings, today) -> SettlementService:
    return SettlementService(store, audit, guard=guard, settings=settings, today=lambda: today)


@pytest.fixture
def liquidation_service(store, audit, guard, today) -> LiquidationService:
    return LiquidationService(store, audit, guard=guard, today=lambda: today)


@pytest.fixture
def notary_service(store, audit, guard, today) -> NotaryService:
    return NotaryService(store, audit, guard=guard, today=lambda: today)


@pytest.fixture
def reconciliation_service(store, audit, settings, guard) -> ReconciliationService:
    return ReconciliationService(store, audit, settings, guard=guard)


@pytest.fixture
def debtor_service(store, settings, today) -> DebtorService:
    return DebtorService(store, settings, today=lambda: today)


def make_title(title_id: str, client: str = "ACME", amount="100.00", due="2023-12-01", **overrides) -> ReceivableTitle:
    values = {
        "id": title_id,
        "client": client,
        "issue_date": "2023-11-01",
        "due_date": due,
        "face_value": amount,
        "balance": amount,
        "status": TitleStatus.OVERDUE,
        "collection_state": CollectionState.COLLECTABLE,
        "category": "SALES",
        "payment_method": "BOLETO",
    }
    values.update(overrides)
    return ReceivableTitle.model_validate(values)


@pytest.fixture
def title_factory():
    """Build a receivable title with sensible overdue defaults."""
    return make_title


@pytest.fixture
def seed_titles(store):
    """Persist receivable titles directly in the in-memory store."""
    def _seed(*titles: ReceivableTitle):
        store.receivables.seed(*(t.to_row() for t in titles))
        return titles
    return _seed


@pytest.fixture
def acme_titles(seed_titles):
    """Two overdue ACME titles of 100.00 and 50.00."""
    return seed_titles(
        make_title("t1", amount="100.00", due="2023-12-01"),
        make_title("t2", amount="50.00", due="2023-12-20"),
    )


@pytest.fixture
def sample_headers() -> dict:
    """Sample request headers with correlation and user IDs."""
    return {
        "X-Correlation-ID": "test-correlation-123",
        "X-User-ID": "maria",
        "Content-Type": "application/json",
    }


@pytest.fixture
def client(store) -> Generator[TestClient, None, None]:
    """
    Create a test client for the FastAPI application.

    The store dependency is replaced by the in-memory store and contract
    documents are disabled.
    """
    from receivables.core.dependencies import get_document_client
    from receivables.database import get_store
    from receivables.main import app
    from receivables.services.document_service import ContractDocumentClient

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_document_client] = lambda: ContractDocumentClient(base_url="")
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
