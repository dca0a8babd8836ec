"""Collection history timeline and financial audit log entries."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import ConfigDict, Field, field_validator

from receivables.models.base import RowModel
from receivables.utils.normalize import ZERO, normalize_text, parse_date, to_money


class HistoryAction(str, Enum):
    """Action tags written by this service; free-form tags are also accepted."""
    SCHEDULED = "SCHEDULED"
    RETURNED = "RETURNED"
    ATTEMPT = "ATTEMPT"
    NO_RESPONSE = "NO_RESPONSE"
    AGREEMENT = "AGREEMENT"
    AGREEMENT_CANCELLED = "AGREEMENT_CANCELLED"
    AGREEMENT_DELETED = "AGREEMENT_DELETED"
    LIQUIDATION_TOTAL = "LIQUIDATION_TOTAL"
    NOTARY = "NOTARY"
    NOTARY_REMOVAL = "NOTARY_REMOVAL"


# Interactions that only make sense with a follow-up date
ACTIONS_REQUIRING_DATE = frozenset({
    HistoryAction.SCHEDULED.value,
    HistoryAction.RETURNED.value,
    HistoryAction.ATTEMPT.value,
})


class CollectionHistoryEntry(RowModel):
    """Immutable timeline entry for a client."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    client: str
    action_taken: str
    note: Optional[str] = None
    next_action_date: Optional[date] = None
    amount_due: Decimal = ZERO
    days_overdue: int = 0
    user: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("client", "action_taken", mode="before")
    @classmethod
    def coerce_code(cls, v):
        return normalize_text(v)

    @field_validator("next_action_date", mode="before")
    @classmethod
    def coerce_date(cls, v):
        return parse_date(v)

    @field_validator("amount_due", mode="before")
    @classmethod
    def coerce_money(cls, v):
        return to_money(v)


class AuditLogEntry(RowModel):
    """Financial audit record for a state-changing action."""

    id: Optional[str] = None
    user: Optional[str] = None
    action: str
    client: Optional[str] = None
    details: Optional[str] = None
    amount: Optional[Decimal] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("amount", mode="before")
    @classmethod
    def coerce_money(cls, v):
        return None if v is None else to_money(v)

    def to_row(self):
        row = super().to_row()
        if row["id"] is None:
            del row["id"]
        return row
