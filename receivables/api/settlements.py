"""
Settlement API Endpoints

Settlement lifecycle, installment liquidation and contract documents.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status

from receivables.core.dependencies import (
    get_current_user,
    get_document_client,
    get_liquidation_service,
    get_settlement_service,
)
from receivables.core.exceptions import ExternalServiceError
from receivables.core.logging import get_logger
from receivables.models import SettlementStatus
from receivables.schemas.common import ApiResponse
from receivables.schemas.settlements import (
    LiquidateRequest,
    SettlementCreateRequest,
    SettlementDetailsResponse,
)
from receivables.services.document_service import ContractDocumentClient, ContractSchedule
from receivables.services.liquidation_service import LiquidationService
from receivables.services.settlement_service import SettlementDetails, SettlementService

logger = get_logger(__name__)
router = APIRouter(tags=["settlements"])


@router.post(
    "/settlements",
    response_model=ApiResponse[Dict[str, Any]],
    status_code=status.HTTP_201_CREATED,
)
async def create_settlement(
    request: SettlementCreateRequest,
    user: str = Depends(get_current_user),
    service: SettlementService = Depends(get_settlement_service),
    documents: ContractDocumentClient = Depends(get_document_client),
):
    """
    Negotiate overdue titles into a settlement with an installment schedule.

    The contract document is requested after the settlement is stored; a
    document failure is reported in the response and does not undo it.
    """
    created = await service.create(
        client=request.client,
        title_ids=request.title_ids,
        agreed_amount=request.agreed_amount,
        installment_count=request.installment_count,
        frequency=request.frequency,
        first_date=request.first_date,
        user=user,
        settlement_id=request.settlement_id,
        note=request.note,
    )

    document: Dict[str, Any] = {"requested": False}
    if request.generate_document and documents.enabled:
        schedule = ContractSchedule.from_settlement(created.settlement, created.installments)
        try:
            document = {"requested": True, "result": await documents.generate(schedule)}
        except ExternalServiceError as e:
            logger.warning(
                "Contract document generation failed",
                settlement_id=created.settlement.id,
                error=str(e),
            )
            document = {"requested": True, "error": str(e)}

    return ApiResponse(
        data={
            "settlement": created.settlement.to_row(),
            "installments": [t.to_row() for t in created.installments],
            "originals": [t.to_row() for t in created.originals],
            "document": document,
        },
        message=f"Settlement {created.settlement.id} created",
    )


@router.get("/settlements", response_model=ApiResponse[List[Dict[str, Any]]])
async def list_settlements(
    status_filter: Optional[SettlementStatus] = Query(None, alias="status"),
    client: Optional[str] = Query(None),
    service: SettlementService = Depends(get_settlement_service),
):
    settlements = await service.list_settlements(status=status_filter, client=client)
    return ApiResponse(data=[s.to_row() for s in settlements])


@router.get("/settlements/{settlement_id}", response_model=ApiResponse[SettlementDetailsResponse])
async def get_settlement(
    settlement_id: str,
    service: SettlementService = Depends(get_settlement_service),
):
    details = await service.get_details(settlement_id)
    return _details_response(details)


@router.post("/settlements/{settlement_id}/finalize", response_model=ApiResponse[SettlementDetailsResponse])
async def finalize_settlement(
    settlement_id: str,
    user: str = Depends(get_current_user),
    service: SettlementService = Depends(get_settlement_service),
):
    details = await service.finalize(settlement_id, user)
    return _details_response(details, f"Settlement {settlement_id} liquidated")


@router.post("/settlements/{settlement_id}/cancel", response_model=ApiResponse[SettlementDetailsResponse])
async def cancel_settlement(
    settlement_id: str,
    user: str = Depends(get_current_user),
    service: SettlementService = Depends(get_settlement_service),
):
    details = await service.cancel(settlement_id, user)
    return _details_response(details, f"Settlement {settlement_id} cancelled")


@router.delete("/settlements/{settlement_id}", response_model=ApiResponse[SettlementDetailsResponse])
async def delete_settlement(
    settlement_id: str,
    confirm: bool = Query(False, description="Must be true; deletion cannot be undone"),
    user: str = Depends(get_current_user),
    service: SettlementService = Depends(get_settlement_service),
):
    details = await service.delete(settlement_id, user, confirm=confirm)
    return _details_response(details, f"Settlement {settlement_id} deleted")


@router.post("/installments/{installment_id}/liquidate", response_model=ApiResponse[Dict[str, Any]])
async def liquidate_installment(
    installment_id: str,
    request: LiquidateRequest,
    user: str = Depends(get_current_user),
    service: LiquidationService = Depends(get_liquidation_service),
):
    result = await service.liquidate(installment_id, request.payment_date, request.method, user)
    return ApiResponse(
        data={
            "installment": result.installment.to_row(),
            "settlement_fully_paid": result.settlement_fully_paid,
        },
        message=f"Installment {installment_id} paid",
    )


def _details_response(details: SettlementDetails, message: Optional[str] = None) -> ApiResponse:
    return ApiResponse(data=SettlementDetailsResponse.from_details(details), message=message)
