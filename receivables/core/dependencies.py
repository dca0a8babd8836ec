"""
Dependency injection for FastAPI application.

Provides factory functions for the store, the services built on it and the
acting user. Tests override ``get_store`` through ``app.dependency_overrides``.
"""

from typing import Optional

from fastapi import Depends, Header

from receivables.core.config import Settings, get_settings
from receivables.core.locks import operation_guard
from receivables.database import Store, get_store
from receivables.services.audit_service import AuditLogService
from receivables.services.debtor_service import DebtorService
from receivables.services.document_service import ContractDocumentClient
from receivables.services.liquidation_service import LiquidationService
from receivables.services.notary_service import NotaryService
from receivables.services.reconciliation_service import ReconciliationService
from receivables.services.settlement_service import SettlementService


def get_current_user(x_user_id: Optional[str] = Header(None)) -> str:
    """Acting user from the ``X-User-ID`` header."""
    return x_user_id or "anonymous"


def get_audit_service(store: Store = Depends(get_store)) -> AuditLogService:
    return AuditLogService(store)


def get_reconciliation_service(
    store: Store = Depends(get_store),
    audit: AuditLogService = Depends(get_audit_service),
    settings: Settings = Depends(get_settings),
) -> ReconciliationService:
    return ReconciliationService(store, audit, settings, guard=operation_guard)


def get_settlement_service(
    store: Store = Depends(get_store),
    audit: AuditLogService = Depends(get_audit_service),
    settings: Settings = Depends(get_settings),
) -> SettlementService:
    return SettlementService(store, audit, guard=operation_guard, settings=settings)


def get_liquidation_service(
    store: Store = Depends(get_store),
    audit: AuditLogService = Depends(get_audit_service),
) -> LiquidationService:
    return LiquidationService(store, audit, guard=operation_guard)


def get_notary_service(
    store: Store = Depends(get_store),
    audit: AuditLogService = Depends(get_audit_service),
) -> NotaryService:
    return NotaryService(store, audit, guard=operation_guard)


def get_debtor_service(
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> DebtorService:
    return DebtorService(store, settings)


def get_document_client() -> ContractDocumentClient:
    return ContractDocumentClient()
