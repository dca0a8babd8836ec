"""Settlement, liquidation, notary and collection API schemas."""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from receivables.models import Frequency
from receivables.services.settlement_service import SettlementDetails


class SettlementCreateRequest(BaseModel):
    """Request schema for negotiating titles into a settlement"""

    client: str = Field(..., min_length=1, max_length=200)
    title_ids: List[str] = Field(..., description="Original titles replaced by the settlement")
    agreed_amount: Decimal = Field(..., description="Total the client agreed to pay")
    installment_count: int = Field(..., description="Number of installments")
    frequency: Frequency = Field(Frequency.MONTHLY)
    first_date: date = Field(..., description="Due date of the first installment")
    settlement_id: Optional[str] = Field(None, max_length=64, description="Idempotency key; generated when omitted")
    note: Optional[str] = Field(None, max_length=2000)
    generate_document: bool = Field(True, description="Request the contract document after creation")

    @field_validator("client")
    @classmethod
    def validate_client(cls, v):
        if not v.strip():
            raise ValueError("client cannot be empty")
        return v.strip()


class LiquidateRequest(BaseModel):
    """Request schema for recording an installment payment"""

    payment_date: Optional[date] = Field(None, description="Defaults to today")
    method: str = Field(..., min_length=1, max_length=50, description="Receipt method, e.g. PIX")


class TitleSelectionRequest(BaseModel):
    title_ids: List[str] = Field(..., description="Titles to move")


class InteractionRequest(BaseModel):
    """Request schema for a collection interaction"""

    action: str = Field(..., min_length=1, max_length=50)
    note: Optional[str] = Field(None, max_length=2000)
    next_action_date: Optional[date] = None


class DiscrepancySchema(BaseModel):
    title_id: str
    kind: str
    detail: str


class SettlementDetailsResponse(BaseModel):
    settlement: Dict[str, Any]
    originals: List[Dict[str, Any]]
    installments: List[Dict[str, Any]]
    discrepancies: List[DiscrepancySchema]
    paid_count: int
    outstanding: Decimal
    all_paid: bool

    @classmethod
    def from_details(cls, details: SettlementDetails) -> "SettlementDetailsResponse":
        return cls(
            settlement=details.settlement.to_row(),
            originals=[t.to_row() for t in details.originals],
            installments=[t.to_row() for t in details.installments],
            discrepancies=[
                DiscrepancySchema(title_id=d.title_id, kind=d.kind, detail=d.detail)
                for d in details.discrepancies
            ],
            paid_count=details.paid_count,
            outstanding=details.outstanding,
            all_paid=details.all_paid,
        )
