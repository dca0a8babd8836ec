"""Settlement (negotiated repayment contract) model."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import Field, field_validator

from receivables.models.base import RowModel
from receivables.utils.normalize import ZERO, normalize_text, parse_date, to_money


class SettlementStatus(str, Enum):
    """Settlement status enumeration"""
    ACTIVE = "ACTIVE"
    LIQUIDATED = "LIQUIDATED"
    CANCELLED = "CANCELLED"


class Frequency(str, Enum):
    """Installment spacing"""
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"


def installment_title_id(settlement_id: str, sequence: int) -> str:
    """Deterministic id of installment ``sequence`` (1-based) of a settlement."""
    return f"{settlement_id}-{sequence}"


class Settlement(RowModel):
    """
    A negotiated repayment contract.

    ``negotiated_title_ids`` is the authoritative list of the originals the
    settlement replaces; the ``BLOCKED_BY_SETTLEMENT`` collection state on
    those titles is only a consistency check against it.
    """

    id: str
    client: str
    original_amount: Decimal = ZERO
    agreed_amount: Decimal
    installment_count: int = Field(..., ge=1)
    frequency: Frequency
    first_installment_date: date
    created_at: datetime = Field(default_factory=datetime.utcnow)
    status: SettlementStatus = SettlementStatus.ACTIVE
    negotiated_title_ids: List[str] = Field(default_factory=list)
    user: Optional[str] = None
    note: Optional[str] = None

    @field_validator("client", mode="before")
    @classmethod
    def coerce_client(cls, v):
        return normalize_text(v)

    @field_validator("original_amount", "agreed_amount", mode="before")
    @classmethod
    def coerce_money(cls, v):
        return to_money(v)

    @field_validator("first_installment_date", mode="before")
    @classmethod
    def coerce_date(cls, v):
        return parse_date(v)

    @field_validator("frequency", "status", mode="before")
    @classmethod
    def coerce_code(cls, v):
        return normalize_text(v)

    @field_validator("negotiated_title_ids", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return [str(i) for i in (v or [])]

    @property
    def is_active(self) -> bool:
        return self.status == SettlementStatus.ACTIVE

    def installment_id(self, sequence: int) -> str:
        return installment_title_id(self.id, sequence)
