"""
Import Reconciliation API Endpoints

Stage an import batch for review, then commit the reviewed staging list.
"""

from typing import List, Type

from fastapi import APIRouter, Depends, status
from pydantic import ValidationError as PydanticValidationError

from receivables.core.dependencies import get_current_user, get_reconciliation_service
from receivables.core.exceptions import ValidationError
from receivables.core.logging import get_logger
from receivables.models import PayableTitle, ReceivableTitle, StagingItem
from receivables.schemas.common import ApiResponse
from receivables.schemas.imports import (
    CommitRequest,
    CommitResponse,
    StageRequest,
    StageResponse,
    StagingItemSchema,
)
from receivables.services.reconciliation_service import ReconciliationService

logger = get_logger(__name__)
router = APIRouter(prefix="/imports", tags=["imports"])


def to_staging_items(items: List[StagingItemSchema], model: Type) -> List[StagingItem]:
    staging = []
    for index, item in enumerate(items):
        try:
            data = model.model_validate(item.data)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Staging item {index} is invalid: {e.errors()[0]['msg']}",
                field="items",
                value=index,
            )
        staging.append(StagingItem(data=data, status=item.status, changed_fields=item.changed_fields))
    return staging


@router.post("/receivables/stage", response_model=ApiResponse[StageResponse])
async def stage_receivables(
    request: StageRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """Classify a receivable import batch as NEW / CHANGED / UNCHANGED."""
    items = await service.stage_receivables(request.candidates)
    return ApiResponse(data=StageResponse.from_items(items), message=f"{len(items)} titles staged")


@router.post("/receivables/commit", response_model=ApiResponse[CommitResponse], status_code=status.HTTP_200_OK)
async def commit_receivables(
    request: CommitRequest,
    user: str = Depends(get_current_user),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    result = await service.commit_receivables(
        to_staging_items(request.items, ReceivableTitle), user, request.file_name
    )
    return ApiResponse(
        data=CommitResponse(**result.model_dump()),
        message=f"{len(result.written)} titles written",
    )


@router.post("/payables/stage", response_model=ApiResponse[StageResponse])
async def stage_payables(
    request: StageRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    items = await service.stage_payables(request.candidates)
    return ApiResponse(data=StageResponse.from_items(items), message=f"{len(items)} titles staged")


@router.post("/payables/commit", response_model=ApiResponse[CommitResponse])
async def commit_payables(
    request: CommitRequest,
    user: str = Depends(get_current_user),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    result = await service.commit_payables(
        to_staging_items(request.items, PayableTitle), user, request.file_name
    )
    return ApiResponse(
        data=CommitResponse(**result.model_dump()),
        message=f"{len(result.written)} titles written",
    )
