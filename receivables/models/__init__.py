"""Domain models for titles, settlements and collection history."""

from receivables.models.history import (
    ACTIONS_REQUIRING_DATE,
    AuditLogEntry,
    CollectionHistoryEntry,
    HistoryAction,
)
from receivables.models.settlement import Frequency, Settlement, SettlementStatus
from receivables.models.staging import CommitResult, StagingItem, StagingStatus
from receivables.models.title import (
    CLOSED_STATUSES,
    NOTARY_STATES,
    SETTLEMENT_BLOCKED_STATES,
    CollectionState,
    InstallmentTitle,
    OriginalTitle,
    PayableTitle,
    ReceivableTitle,
    Title,
    TitleOrigin,
    TitleRole,
    TitleStatus,
    classify_title,
)

__all__ = [
    "ACTIONS_REQUIRING_DATE",
    "AuditLogEntry",
    "CLOSED_STATUSES",
    "CollectionHistoryEntry",
    "CollectionState",
    "CommitResult",
    "Frequency",
    "HistoryAction",
    "InstallmentTitle",
    "NOTARY_STATES",
    "OriginalTitle",
    "PayableTitle",
    "ReceivableTitle",
    "SETTLEMENT_BLOCKED_STATES",
    "Settlement",
    "SettlementStatus",
    "StagingItem",
    "StagingStatus",
    "Title",
    "TitleOrigin",
    "TitleRole",
    "TitleStatus",
    "classify_title",
]
