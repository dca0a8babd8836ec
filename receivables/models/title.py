"""
Receivable and payable title models.

A receivable row plays one of two roles depending on ``origin``: an
original imported debt (possibly locked by a settlement) or an installment
generated by a settlement. Both share one physical table; the domain layer
works with the tagged ``OriginalTitle`` / ``InstallmentTitle`` variants
returned by ``classify_title``.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, field_validator, model_validator

from receivables.models.base import RowModel
from receivables.utils.normalize import ZERO, normalize_text, parse_date, to_money


class TitleStatus(str, Enum):
    """Title status enumeration"""
    OPEN = "OPEN"
    OVERDUE = "OVERDUE"
    PAID = "PAID"
    NEGOTIATED = "NEGOTIATED"
    CANCELLED = "CANCELLED"
    LIQUIDATED = "LIQUIDATED"


CLOSED_STATUSES = frozenset({
    TitleStatus.PAID,
    TitleStatus.NEGOTIATED,
    TitleStatus.CANCELLED,
    TitleStatus.LIQUIDATED,
})


class CollectionState(str, Enum):
    """Why a title is (or is not) part of normal collection work"""
    COLLECTABLE = "COLLECTABLE"
    BLOCKED_BY_SETTLEMENT = "BLOCKED_BY_SETTLEMENT"
    AT_NOTARY = "AT_NOTARY"
    BLOCKED_BY_SETTLEMENT_AT_NOTARY = "BLOCKED_BY_SETTLEMENT_AT_NOTARY"
    NOT_COLLECTABLE = "NOT_COLLECTABLE"


NOTARY_STATES = frozenset({
    CollectionState.AT_NOTARY,
    CollectionState.BLOCKED_BY_SETTLEMENT_AT_NOTARY,
})

SETTLEMENT_BLOCKED_STATES = frozenset({
    CollectionState.BLOCKED_BY_SETTLEMENT,
    CollectionState.BLOCKED_BY_SETTLEMENT_AT_NOTARY,
})


class TitleOrigin(str, Enum):
    EXTERNAL_IMPORT = "EXTERNAL_IMPORT"
    INTERNAL_SETTLEMENT = "INTERNAL_SETTLEMENT"


class TitleRole(str, Enum):
    ORIGINAL = "ORIGINAL"
    INSTALLMENT = "INSTALLMENT"
    STANDALONE = "STANDALONE"


class _TitleFields(RowModel):
    """Fields and coercion common to receivable and payable titles."""

    id: str
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    liquidation_date: Optional[date] = None
    face_value: Decimal = ZERO
    balance: Decimal = ZERO
    status: TitleStatus = TitleStatus.OPEN
    document_number: Optional[str] = None
    category: Optional[str] = None
    payment_method: Optional[str] = None
    history: Optional[str] = None
    competence: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def validate_id(cls, v):
        text = str(v).strip() if v is not None else ""
        if not text:
            raise ValueError("Title id is required")
        return text

    @field_validator("face_value", "balance", mode="before")
    @classmethod
    def coerce_money(cls, v):
        return to_money(v)

    @field_validator("issue_date", "due_date", "liquidation_date", mode="before")
    @classmethod
    def coerce_date(cls, v):
        return parse_date(v)

    @field_validator("category", "payment_method", mode="before")
    @classmethod
    def coerce_code(cls, v):
        return normalize_text(v) or None

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, v):
        return normalize_text(v) or TitleStatus.OPEN

    @model_validator(mode="after")
    def validate_balance(self):
        if self.balance > self.face_value:
            raise ValueError(
                f"Balance {self.balance} exceeds face value {self.face_value} for title {self.id}"
            )
        if self.status in CLOSED_STATUSES and self.balance != ZERO:
            raise ValueError(
                f"Title {self.id} in status {self.status.value} must have a zero balance"
            )
        return self

    def is_overdue(self, today: date) -> bool:
        return bool(self.due_date and self.due_date < today)

    def restored_status(self, today: date) -> TitleStatus:
        """Status of a reopened title: OVERDUE when past due, OPEN otherwise."""
        return TitleStatus.OVERDUE if self.is_overdue(today) else TitleStatus.OPEN


class ReceivableTitle(_TitleFields):
    """A single amount owed by a client."""

    client: str
    collection_state: Optional[CollectionState] = None
    origin: TitleOrigin = TitleOrigin.EXTERNAL_IMPORT
    settlement_id: Optional[str] = None
    received_amount: Decimal = ZERO
    fees: Decimal = ZERO
    receipt_method: Optional[str] = None
    bank_number: Optional[str] = None

    @field_validator("client", mode="before")
    @classmethod
    def coerce_client(cls, v):
        text = normalize_text(v)
        if not text:
            raise ValueError("Client is required")
        return text

    @field_validator("received_amount", "fees", mode="before")
    @classmethod
    def coerce_received(cls, v):
        return to_money(v)

    @field_validator("receipt_method", mode="before")
    @classmethod
    def coerce_receipt_method(cls, v):
        return normalize_text(v) or None

    @field_validator("collection_state", mode="before")
    @classmethod
    def coerce_collection_state(cls, v):
        return normalize_text(v) or None

    @field_validator("origin", mode="before")
    @classmethod
    def coerce_origin(cls, v):
        return normalize_text(v) or TitleOrigin.EXTERNAL_IMPORT

    @property
    def role(self) -> TitleRole:
        if self.origin == TitleOrigin.INTERNAL_SETTLEMENT:
            return TitleRole.INSTALLMENT
        if self.settlement_id or self.collection_state in SETTLEMENT_BLOCKED_STATES:
            return TitleRole.ORIGINAL
        return TitleRole.STANDALONE

    @property
    def is_installment(self) -> bool:
        return self.role == TitleRole.INSTALLMENT

    @property
    def is_settlement_linked(self) -> bool:
        return self.role != TitleRole.STANDALONE

    @property
    def at_notary(self) -> bool:
        return self.collection_state in NOTARY_STATES

    @property
    def exposure(self) -> Decimal:
        """Amount at stake: the balance, or the face value once the balance is zero."""
        return self.balance if self.balance > ZERO else self.face_value


class PayableTitle(_TitleFields):
    """An amount the business owes to a supplier."""

    supplier: str
    paid_amount: Decimal = ZERO
    pix_or_boleto_key: Optional[str] = None

    @field_validator("supplier", mode="before")
    @classmethod
    def coerce_supplier(cls, v):
        text = normalize_text(v)
        if not text:
            raise ValueError("Supplier is required")
        return text

    @field_validator("paid_amount", mode="before")
    @classmethod
    def coerce_paid(cls, v):
        return to_money(v)


class OriginalTitle(BaseModel):
    """Imported debt; ``locked`` while a settlement blocks its collection."""

    kind: Literal["original"] = "original"
    title: ReceivableTitle

    @property
    def id(self) -> str:
        return self.title.id

    @property
    def locked(self) -> bool:
        return self.title.collection_state in SETTLEMENT_BLOCKED_STATES


class InstallmentTitle(BaseModel):
    """One scheduled payment generated by a settlement."""

    kind: Literal["installment"] = "installment"
    title: ReceivableTitle

    @property
    def id(self) -> str:
        return self.title.id

    @property
    def settlement_id(self) -> str:
        return self.title.settlement_id


Title = Union[OriginalTitle, InstallmentTitle]


def classify_title(title: ReceivableTitle) -> Title:
    """
    Wrap a stored receivable in its domain variant.

    Raises:
        ValueError: If an installment row carries no settlement id
    """
    if title.origin == TitleOrigin.INTERNAL_SETTLEMENT:
        if not title.settlement_id:
            raise ValueError(f"Installment {title.id} has no settlement id")
        return InstallmentTitle(title=title)
    return OriginalTitle(title=title)
