"""Reconciliation staging results. Not persisted."""

from enum import Enum
from typing import List, Union

from pydantic import BaseModel, Field

from receivables.models.title import PayableTitle, ReceivableTitle


class StagingStatus(str, Enum):
    NEW = "NEW"
    CHANGED = "CHANGED"
    UNCHANGED = "UNCHANGED"


class StagingItem(BaseModel):
    """A proposed create/update awaiting confirmation."""

    data: Union[ReceivableTitle, PayableTitle]
    status: StagingStatus
    changed_fields: List[str] = Field(default_factory=list)

    @property
    def pending(self) -> bool:
        return self.status != StagingStatus.UNCHANGED


class CommitResult(BaseModel):
    """Outcome of committing a staging list."""

    written: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    protected: List[str] = Field(default_factory=list)

    @property
    def written_count(self) -> int:
        return len(self.written)
