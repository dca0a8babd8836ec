"""
Import reconciliation API schemas.

Candidates arrive already parsed by the ingestion tool; each is a flat
title record (ISO dates, non-negative amounts).
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from receivables.models import StagingItem, StagingStatus


class StageRequest(BaseModel):
    """Request schema for staging an import batch"""

    candidates: List[Dict[str, Any]] = Field(..., min_length=1, description="Normalized candidate titles")


class StagingItemSchema(BaseModel):
    data: Dict[str, Any]
    status: StagingStatus
    changed_fields: List[str] = Field(default_factory=list)

    @classmethod
    def from_item(cls, item: StagingItem) -> "StagingItemSchema":
        return cls(data=item.data.to_row(), status=item.status, changed_fields=item.changed_fields)


class StageResponse(BaseModel):
    items: List[StagingItemSchema]
    new: int = 0
    changed: int = 0
    unchanged: int = 0

    @classmethod
    def from_items(cls, items: List[StagingItem]) -> "StageResponse":
        return cls(
            items=[StagingItemSchema.from_item(i) for i in items],
            new=sum(1 for i in items if i.status == StagingStatus.NEW),
            changed=sum(1 for i in items if i.status == StagingStatus.CHANGED),
            unchanged=sum(1 for i in items if i.status == StagingStatus.UNCHANGED),
        )


class CommitRequest(BaseModel):
    """Request schema for committing a reviewed staging list"""

    items: List[StagingItemSchema] = Field(..., min_length=1)
    file_name: Optional[str] = Field(None, max_length=255, description="Source file, for the audit trail")


class CommitResponse(BaseModel):
    written: List[str]
    skipped: List[str]
    protected: List[str]
