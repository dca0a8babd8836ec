"""
Collection API Endpoints

Notary workflow, debtor rollups, collection interactions and the audit log.
"""

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from receivables.core.dependencies import (
    get_audit_service,
    get_current_user,
    get_debtor_service,
    get_notary_service,
)
from receivables.models.base import to_row_value
from receivables.schemas.common import ApiResponse
from receivables.schemas.settlements import InteractionRequest, TitleSelectionRequest
from receivables.services.audit_service import AuditLogService
from receivables.services.debtor_service import DebtorService, DebtorSummary
from receivables.services.notary_service import NotaryResult, NotaryService

router = APIRouter(tags=["collections"])


def summary_payload(summary: DebtorSummary) -> Dict[str, Any]:
    payload = to_row_value(asdict(summary))
    payload["sent_to_notary"] = summary.sent_to_notary
    return payload


def notary_payload(result: NotaryResult) -> Dict[str, Any]:
    return {
        "titles": [t.to_row() for t in result.titles],
        "history": [e.to_row() for e in result.history],
        "total": float(result.total),
    }


@router.post("/notary/send", response_model=ApiResponse[Dict[str, Any]])
async def send_to_notary(
    request: TitleSelectionRequest,
    user: str = Depends(get_current_user),
    service: NotaryService = Depends(get_notary_service),
):
    result = await service.send_to_notary(request.title_ids, user)
    return ApiResponse(data=notary_payload(result), message=f"{len(result.titles)} titles sent to notary")


@router.post("/notary/remove", response_model=ApiResponse[Dict[str, Any]])
async def remove_from_notary(
    request: TitleSelectionRequest,
    user: str = Depends(get_current_user),
    service: NotaryService = Depends(get_notary_service),
):
    result = await service.remove_from_notary(request.title_ids, user)
    return ApiResponse(data=notary_payload(result), message=f"{len(result.titles)} titles removed from notary")


@router.get("/debtors", response_model=ApiResponse[List[Dict[str, Any]]])
async def list_debtors(service: DebtorService = Depends(get_debtor_service)):
    summaries = await service.summaries()
    return ApiResponse(data=[summary_payload(s) for s in summaries])


@router.get("/debtors/queues", response_model=ApiResponse[Dict[str, Any]])
async def debtor_queues(service: DebtorService = Depends(get_debtor_service)):
    """Clients due for collection now and clients scheduled for later."""
    queues = await service.work_queues()
    return ApiResponse(data={
        "due_now": [summary_payload(s) for s in queues.due_now],
        "scheduled": [summary_payload(s) for s in queues.scheduled],
    })


@router.get("/debtors/{client}", response_model=ApiResponse[Dict[str, Any]])
async def client_dossier(client: str, service: DebtorService = Depends(get_debtor_service)):
    dossier = await service.client_dossier(client)
    return ApiResponse(data={
        "client": dossier.client,
        "summary": summary_payload(dossier.summary) if dossier.summary else None,
        "titles": [t.to_row() for t in dossier.titles],
        "timeline": [e.to_row() for e in dossier.timeline],
    })


@router.post(
    "/debtors/{client}/interactions",
    response_model=ApiResponse[Dict[str, Any]],
    status_code=status.HTTP_201_CREATED,
)
async def record_interaction(
    client: str,
    request: InteractionRequest,
    user: str = Depends(get_current_user),
    service: DebtorService = Depends(get_debtor_service),
):
    entry = await service.record_interaction(
        client, request.action, request.note, request.next_action_date, user
    )
    return ApiResponse(data=entry.to_row(), message="Interaction recorded")


@router.get("/audit-logs", response_model=ApiResponse[List[Dict[str, Any]]])
async def list_audit_logs(
    client: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    service: AuditLogService = Depends(get_audit_service),
):
    entries = await service.list(client=client, limit=limit)
    return ApiResponse(data=[e.to_row() for e in entries])
