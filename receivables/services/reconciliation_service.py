"""
Import reconciliation.

Diffs a batch of normalized candidate titles against the persisted rows and
classifies each as NEW, CHANGED or UNCHANGED. Staging is a pure read;
``commit_*`` writes the pending items in one upsert keyed by id.

Both title types use the same comparison policy: counterparty, balance,
status, due date and face value, money compared within the configured
tolerance. Rows linked to a settlement keep their lifecycle-owned fields
(balance, status, liquidation date) and those fields are left out of the
comparison, since an import never overwrites them.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Type, Union

from pydantic import ValidationError as PydanticValidationError

from receivables.core.config import Settings, get_settings
from receivables.core.exceptions import ReconciliationFetchError, StoreError, ValidationError
from receivables.core.locks import OperationGuard, operation_guard, title_key
from receivables.core.logging import get_logger, log_business_event, performance_timing
from receivables.database import PayableRepository, ReceivableRepository, Store
from receivables.models import (
    CollectionState,
    CommitResult,
    PayableTitle,
    ReceivableTitle,
    StagingItem,
    StagingStatus,
    TitleOrigin,
)
from receivables.services.audit_service import AuditLogService
from receivables.utils.normalize import money_equal

logger = get_logger(__name__)

MONEY_FIELDS = ("balance", "face_value")

RECEIVABLE_COMPARED_FIELDS = ("client", "balance", "status", "due_date", "face_value")
PAYABLE_COMPARED_FIELDS = ("supplier", "balance", "status", "due_date", "face_value")

# Owned by the settlement, liquidation and notary workflows
LIFECYCLE_FIELDS = ("settlement_id", "origin", "collection_state", "received_amount", "receipt_method")
SETTLEMENT_OWNED_FIELDS = ("balance", "status", "liquidation_date")

Candidate = Union[Dict[str, Any], ReceivableTitle, PayableTitle]


def coerce_candidates(candidates: Sequence[Candidate], model: Type) -> List:
    """
    Build title models from candidate records and reject duplicate ids.

    Raises:
        ValidationError: A candidate is malformed or an id repeats
    """
    titles = []
    for index, candidate in enumerate(candidates):
        if isinstance(candidate, model):
            titles.append(candidate)
            continue
        try:
            titles.append(model.model_validate(candidate))
        except PydanticValidationError as e:
            raise ValidationError(
                f"Candidate {index} is invalid: {e.errors()[0]['msg']}",
                field="candidates",
                value=index,
            )

    seen = set()
    duplicates = []
    for title in titles:
        if title.id in seen:
            duplicates.append(title.id)
        seen.add(title.id)
    if duplicates:
        raise ValidationError(
            f"Duplicate ids in batch: {', '.join(sorted(set(duplicates)))}",
            field="candidates",
            value=sorted(set(duplicates)),
        )
    return titles


def diff_fields(candidate, persisted, fields: Iterable[str], tolerance) -> List[str]:
    """Names of the compared fields whose values differ."""
    changed = []
    for name in fields:
        new, old = getattr(candidate, name), getattr(persisted, name)
        if name in MONEY_FIELDS:
            if not money_equal(new, old, tolerance):
                changed.append(name)
        elif new != old:
            changed.append(name)
    return changed


def compared_receivable_fields(persisted: ReceivableTitle) -> List[str]:
    if persisted.is_settlement_linked:
        return [f for f in RECEIVABLE_COMPARED_FIELDS if f not in SETTLEMENT_OWNED_FIELDS]
    return list(RECEIVABLE_COMPARED_FIELDS)


def classify(candidate, persisted, fields: Iterable[str], tolerance) -> StagingItem:
    if persisted is None:
        return StagingItem(data=candidate, status=StagingStatus.NEW)
    changed = diff_fields(candidate, persisted, fields, tolerance)
    status = StagingStatus.CHANGED if changed else StagingStatus.UNCHANGED
    return StagingItem(data=candidate, status=status, changed_fields=changed)


def merge_receivable(candidate: ReceivableTitle, persisted: Optional[ReceivableTitle]) -> ReceivableTitle:
    """The row an import writes: candidate data over lifecycle-owned state."""
    values = candidate.model_dump()
    if persisted is None:
        values["origin"] = TitleOrigin.EXTERNAL_IMPORT
        values["settlement_id"] = None
        values["collection_state"] = candidate.collection_state or CollectionState.COLLECTABLE
    else:
        for name in LIFECYCLE_FIELDS:
            values[name] = getattr(persisted, name)
        if persisted.is_settlement_linked:
            for name in SETTLEMENT_OWNED_FIELDS:
                values[name] = getattr(persisted, name)
    try:
        return ReceivableTitle.model_validate(values)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Title {candidate.id} cannot be merged: {e.errors()[0]['msg']}",
            field="candidates",
            value=candidate.id,
        )


class ReconciliationService:
    """Stages and commits import batches."""

    def __init__(
        self,
        store: Store,
        audit: AuditLogService,
        settings: Optional[Settings] = None,
        guard: OperationGuard = operation_guard,
    ):
        self.receivables = ReceivableRepository(store.receivables)
        self.payables = PayableRepository(store.payables)
        self.audit = audit
        self.guard = guard
        self.settings = settings or get_settings()

    async def _fetch(self, repository, ids: List[str]) -> Dict[str, Any]:
        try:
            return await repository.get_many(ids)
        except StoreError as e:
            logger.error("Failed to fetch persisted titles for reconciliation", count=len(ids), error=e.detail)
            raise ReconciliationFetchError(
                f"Could not fetch persisted titles: {e.detail}",
                operation="select",
                table=e.table,
            ) from e

    async def stage_receivables(self, candidates: Sequence[Candidate]) -> List[StagingItem]:
        titles = coerce_candidates(candidates, ReceivableTitle)
        with performance_timing("stage_receivables"):
            persisted = await self._fetch(self.receivables, [t.id for t in titles])
            items = []
            for title in titles:
                existing = persisted.get(title.id)
                fields = compared_receivable_fields(existing) if existing else ()
                items.append(classify(title, existing, fields, self.settings.money_tolerance))

        self._log_summary("receivables", items)
        return items

    async def stage_payables(self, candidates: Sequence[Candidate]) -> List[StagingItem]:
        titles = coerce_candidates(candidates, PayableTitle)
        with performance_timing("stage_payables"):
            persisted = await self._fetch(self.payables, [t.id for t in titles])
            items = [
                classify(t, persisted.get(t.id), PAYABLE_COMPARED_FIELDS, self.settings.money_tolerance)
                for t in titles
            ]

        self._log_summary("payables", items)
        return items

    async def commit_receivables(
        self,
        staging: Sequence[StagingItem],
        user: Optional[str],
        file_name: Optional[str] = None,
    ) -> CommitResult:
        """
        Write NEW and CHANGED receivables.

        Lifecycle-owned fields are re-read and preserved, so re-committing
        the same staging list leaves the store unchanged. Every pending id is
        held for the read and the write; a title busy in another operation
        refuses the whole commit.

        Raises:
            ConcurrentOperationError: A pending title is in flight elsewhere
        """
        pending, result = self._split(staging, ReceivableTitle)
        if not pending:
            return result

        keys = [title_key(t.id) for t in pending]
        async with self.guard.hold(keys, operation="commit_receivables"):
            persisted = await self._fetch(self.receivables, [t.id for t in pending])
            rows = []
            for title in pending:
                existing = persisted.get(title.id)
                if existing is not None and existing.is_settlement_linked:
                    result.protected.append(title.id)
                rows.append(merge_receivable(title, existing))

            await self.receivables.upsert(rows)
            result.written = [t.id for t in rows]

        await self._record_commit("IMPORT_COMMIT_RECEIVABLES", user, file_name, result)
        return result

    async def commit_payables(
        self,
        staging: Sequence[StagingItem],
        user: Optional[str],
        file_name: Optional[str] = None,
    ) -> CommitResult:
        pending, result = self._split(staging, PayableTitle)
        if not pending:
            return result

        await self.payables.upsert(pending)
        result.written = [t.id for t in pending]
        await self._record_commit("IMPORT_COMMIT_PAYABLES", user, file_name, result)
        return result

    def _split(self, staging: Sequence[StagingItem], model: Type):
        result = CommitResult()
        pending = []
        for item in staging:
            if not isinstance(item.data, model):
                raise ValidationError(
                    f"Staging item {item.data.id} is not a {model.__name__}",
                    field="staging",
                    value=item.data.id,
                )
            if item.pending:
                pending.append(item.data)
            else:
                result.skipped.append(item.data.id)
        coerce_candidates(pending, model)
        return pending, result

    async def _record_commit(self, action: str, user: Optional[str], file_name: Optional[str], result: CommitResult):
        log_business_event(
            "import_committed",
            action=action,
            written=len(result.written),
            skipped=len(result.skipped),
            protected=len(result.protected),
            file_name=file_name,
        )
        details = f"{len(result.written)} titles written, {len(result.skipped)} unchanged"
        if file_name:
            details = f"{details} ({file_name})"
        await self.audit.append(user, action, details=details)

    def _log_summary(self, kind: str, items: List[StagingItem]) -> None:
        counts = {status.value: 0 for status in StagingStatus}
        for item in items:
            counts[item.status.value] += 1
        logger.info("Import batch staged", kind=kind, total=len(items), **counts)
