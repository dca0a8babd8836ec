"""
Notary (protest) workflow.

Moves titles into and out of the notary collection states. Only the
collection state changes; balance and status are never touched, so a title
can be settlement-blocked and at notary at the same time.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence

from receivables.core.exceptions import ConflictError, ValidationError
from receivables.core.locks import OperationGuard, operation_guard, title_key
from receivables.core.logging import get_logger, log_business_event, performance_timing
from receivables.database import HistoryRepository, ReceivableRepository, Store
from receivables.models import (
    CollectionHistoryEntry,
    CollectionState,
    HistoryAction,
    ReceivableTitle,
)
from receivables.services.audit_service import AuditLogService
from receivables.services.plan import OperationPlan
from receivables.utils.normalize import ZERO, days_overdue

logger = get_logger(__name__)

SEND_TRANSITIONS = {
    None: CollectionState.AT_NOTARY,
    CollectionState.COLLECTABLE: CollectionState.AT_NOTARY,
    CollectionState.BLOCKED_BY_SETTLEMENT: CollectionState.BLOCKED_BY_SETTLEMENT_AT_NOTARY,
}

REMOVE_TRANSITIONS = {
    CollectionState.AT_NOTARY: CollectionState.COLLECTABLE,
    CollectionState.BLOCKED_BY_SETTLEMENT_AT_NOTARY: CollectionState.BLOCKED_BY_SETTLEMENT,
}


@dataclass
class NotaryResult:
    titles: List[ReceivableTitle]
    history: List[CollectionHistoryEntry]

    @property
    def total(self) -> Decimal:
        return sum((t.exposure for t in self.titles), ZERO)


class NotaryService:
    def __init__(
        self,
        store: Store,
        audit: AuditLogService,
        guard: OperationGuard = operation_guard,
        today: Callable[[], date] = date.today,
    ):
        self.titles = ReceivableRepository(store.receivables)
        self.history = HistoryRepository(store.history)
        self.audit = audit
        self.guard = guard
        self.today = today

    async def send_to_notary(self, title_ids: Sequence[str], user: Optional[str]) -> NotaryResult:
        """
        Protest titles.

        Raises:
            ValidationError: No titles selected
            NotFoundError: Unknown title ids
            ConflictError: A title is already at notary or is not collectable
        """
        return await self._transition(
            title_ids,
            user,
            operation="send_to_notary",
            transitions=SEND_TRANSITIONS,
            action=HistoryAction.NOTARY,
            verb="sent to notary",
        )

    async def remove_from_notary(self, title_ids: Sequence[str], user: Optional[str]) -> NotaryResult:
        """
        Withdraw titles from notary.

        Raises:
            ValidationError: No titles selected
            NotFoundError: Unknown title ids
            ConflictError: A title is not currently at notary
        """
        return await self._transition(
            title_ids,
            user,
            operation="remove_from_notary",
            transitions=REMOVE_TRANSITIONS,
            action=HistoryAction.NOTARY_REMOVAL,
            verb="removed from notary",
        )

    async def _transition(
        self,
        title_ids: Sequence[str],
        user: Optional[str],
        operation: str,
        transitions: Dict[Optional[CollectionState], CollectionState],
        action: HistoryAction,
        verb: str,
    ) -> NotaryResult:
        ids = list(dict.fromkeys(str(i) for i in (title_ids or [])))
        if not ids:
            raise ValidationError("At least one title must be selected", field="title_ids")

        async with self.guard.hold([title_key(i) for i in ids], operation=operation):
            with performance_timing(operation):
                titles = await self.titles.require_many(ids)
                targets: Dict[CollectionState, List[str]] = {}
                moved = []
                for title_id in ids:
                    title = titles[title_id]
                    target = transitions.get(title.collection_state)
                    if target is None:
                        raise self._rejection(operation, title)
                    targets.setdefault(target, []).append(title_id)
                    moved.append(title.model_copy(update={"collection_state": target}))

                entries = self._history_entries(moved, action, verb, user)

                plan = OperationPlan(operation, ",".join(ids))
                for target, group in targets.items():
                    plan.add_step(
                        f"set_{target.value.lower()}",
                        lambda group=group, target=target: self.titles.update_ids(
                            group, {"collection_state": target}
                        ),
                        retry_safe=True,
                    )
                plan.add_step("append_history", lambda: self.history.extend(entries))
                await plan.run()

                result = NotaryResult(titles=moved, history=entries)
                log_business_event(
                    operation,
                    title_count=len(moved),
                    clients=sorted({t.client for t in moved}),
                    total=str(result.total),
                )
                for entry in entries:
                    await self.audit.append(
                        user,
                        action.value,
                        client=entry.client,
                        details=entry.note,
                        amount=entry.amount_due,
                    )
                return result

    def _rejection(self, operation: str, title: ReceivableTitle) -> ConflictError:
        state = title.collection_state.value if title.collection_state else "unset"
        if operation == "send_to_notary":
            if title.at_notary:
                return ConflictError(
                    f"Title {title.id} is already at notary",
                    rule_name="already_at_notary",
                    entity_id=title.id,
                )
            return ConflictError(
                f"Title {title.id} cannot be protested from collection state {state}",
                rule_name="not_protestable",
                entity_id=title.id,
            )
        return ConflictError(
            f"Title {title.id} is not at notary (collection state {state})",
            rule_name="not_at_notary",
            entity_id=title.id,
        )

    def _history_entries(
        self,
        titles: List[ReceivableTitle],
        action: HistoryAction,
        verb: str,
        user: Optional[str],
    ) -> List[CollectionHistoryEntry]:
        """One aggregated entry per client with the count and total value."""
        today = self.today()
        by_client: Dict[str, List[ReceivableTitle]] = {}
        for title in titles:
            by_client.setdefault(title.client, []).append(title)

        entries = []
        for client, group in by_client.items():
            total = sum((t.exposure for t in group), ZERO)
            entries.append(CollectionHistoryEntry(
                client=client,
                action_taken=action.value,
                note=f"{len(group)} titles {verb}: {', '.join(t.id for t in group)} (total {total})",
                amount_due=total,
                days_overdue=max(days_overdue(t.due_date, today) for t in group),
                user=user,
            ))
        return entries
