"""
Settlement Lifecycle Service

Creates, finalizes, cancels and deletes settlements. A settlement replaces a
client's overdue titles (the originals) with a schedule of new installment
titles:

    (none) -> ACTIVE -> LIQUIDATED | CANCELLED
    ACTIVE | CANCELLED -> deleted

Every transition is an ``OperationPlan`` keyed by the settlement id. At most
one operation may be in flight per settlement and per title; concurrent
callers are refused by the ``OperationGuard``.
"""

from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from receivables.core.config import Settings, get_settings
from receivables.core.exceptions import (
    ConflictError,
    NotFoundError,
    PreconditionNotMetError,
    ValidationError,
)
from receivables.core.locks import OperationGuard, operation_guard, settlement_key, title_key
from receivables.core.logging import (
    correlation_context,
    get_logger,
    log_business_event,
    performance_timing,
)
from receivables.database import HistoryRepository, ReceivableRepository, SettlementRepository, Store
from receivables.models import (
    CollectionHistoryEntry,
    CollectionState,
    Frequency,
    HistoryAction,
    InstallmentTitle,
    ReceivableTitle,
    Settlement,
    SettlementStatus,
    TitleOrigin,
    TitleStatus,
    classify_title,
)
from receivables.models.settlement import installment_title_id
from receivables.services.audit_service import AuditLogService
from receivables.services.plan import OperationPlan
from receivables.utils.normalize import (
    CENTS,
    ZERO,
    add_frequency,
    days_overdue,
    normalize_text,
    parse_date,
    split_amount,
    to_money,
)

logger = get_logger(__name__)


@dataclass
class Discrepancy:
    """Disagreement between the id list and the titles' link state."""

    title_id: str
    kind: str  # missing, listed_not_linked, linked_elsewhere, linked_not_listed, linked_unblocked
    detail: str


@dataclass
class SettlementPartition:
    originals: List[ReceivableTitle] = field(default_factory=list)
    installments: List[ReceivableTitle] = field(default_factory=list)
    discrepancies: List[Discrepancy] = field(default_factory=list)


@dataclass
class SettlementCreated:
    settlement: Settlement
    installments: List[ReceivableTitle]
    originals: List[ReceivableTitle]


@dataclass
class SettlementDetails:
    settlement: Settlement
    originals: List[ReceivableTitle]
    installments: List[ReceivableTitle]
    discrepancies: List[Discrepancy]

    @property
    def paid_count(self) -> int:
        return sum(1 for t in self.installments if t.status == TitleStatus.PAID)

    @property
    def outstanding(self) -> Decimal:
        return sum((t.balance for t in self.installments), ZERO)

    @property
    def all_paid(self) -> bool:
        return bool(self.installments) and self.paid_count == len(self.installments)


def partition_settlement_titles(
    settlement: Settlement,
    linked: Iterable[ReceivableTitle],
    listed: Dict[str, ReceivableTitle],
) -> SettlementPartition:
    """
    Split a settlement's titles into originals and installments.

    A linked installment row is an installment. Any other linked title is an
    original when its id is in ``negotiated_title_ids`` or its collection
    state is settlement-blocked. Linked titles that are neither, and listed
    titles that are not linked to this settlement, are reported, not touched.

    Args:
        settlement: The settlement whose titles are partitioned
        linked: Titles whose ``settlement_id`` is the settlement's id
        listed: Titles fetched by ``negotiated_title_ids``, keyed by id
    """
    listed_ids = set(settlement.negotiated_title_ids)
    partition = SettlementPartition()
    seen = set()

    for title in linked:
        seen.add(title.id)
        variant = classify_title(title)
        if isinstance(variant, InstallmentTitle):
            partition.installments.append(title)
        elif title.id in listed_ids:
            partition.originals.append(title)
        elif variant.locked:
            partition.originals.append(title)
            partition.discrepancies.append(Discrepancy(
                title.id,
                "linked_not_listed",
                "Title is blocked by the settlement but missing from its id list",
            ))
        else:
            partition.discrepancies.append(Discrepancy(
                title.id,
                "linked_unblocked",
                "Title carries the settlement id but is neither listed nor blocked",
            ))

    for title_id in settlement.negotiated_title_ids:
        if title_id in seen:
            continue
        title = listed.get(title_id)
        if title is None:
            partition.discrepancies.append(Discrepancy(title_id, "missing", "Listed title does not exist"))
        elif title.settlement_id and title.settlement_id != settlement.id:
            partition.discrepancies.append(Discrepancy(
                title_id,
                "linked_elsewhere",
                f"Listed title is linked to settlement {title.settlement_id}",
            ))
        elif settlement.is_active:
            partition.discrepancies.append(Discrepancy(
                title_id,
                "listed_not_linked",
                "Listed title is not locked by the settlement",
            ))

    if partition.discrepancies:
        logger.warning(
            "Settlement membership disagrees with title link state",
            settlement_id=settlement.id,
            discrepancies=[(d.title_id, d.kind) for d in partition.discrepancies],
        )
    return partition


def build_installments(
    settlement: Settlement,
    today: date,
    category: str,
    payment_method: str,
) -> List[ReceivableTitle]:
    """Installment rows for a settlement: equal split, remainder on the last one."""
    amounts = split_amount(settlement.agreed_amount, settlement.installment_count)
    count = settlement.installment_count
    installments = []
    for index, amount in enumerate(amounts):
        sequence = index + 1
        installments.append(ReceivableTitle(
            id=settlement.installment_id(sequence),
            client=settlement.client,
            issue_date=today,
            due_date=add_frequency(settlement.first_installment_date, settlement.frequency, index),
            face_value=amount,
            balance=amount,
            status=TitleStatus.OPEN,
            collection_state=CollectionState.NOT_COLLECTABLE,
            document_number=f"{settlement.id} {sequence}/{count}",
            category=category,
            payment_method=payment_method,
            history=f"Installment {sequence}/{count} of settlement {settlement.id}",
            origin=TitleOrigin.INTERNAL_SETTLEMENT,
            settlement_id=settlement.id,
        ))
    return installments


def locked_state(state: Optional[CollectionState]) -> CollectionState:
    if state in (CollectionState.AT_NOTARY, CollectionState.BLOCKED_BY_SETTLEMENT_AT_NOTARY):
        return CollectionState.BLOCKED_BY_SETTLEMENT_AT_NOTARY
    return CollectionState.BLOCKED_BY_SETTLEMENT


def restore_patch(title: ReceivableTitle, today: date) -> Dict[str, Any]:
    """Fields that return an original to its pre-negotiation state."""
    state = (
        CollectionState.AT_NOTARY
        if title.collection_state == CollectionState.BLOCKED_BY_SETTLEMENT_AT_NOTARY
        else CollectionState.COLLECTABLE
    )
    return {
        "balance": title.face_value,
        "status": title.restored_status(today),
        "collection_state": state,
        "settlement_id": None,
        "liquidation_date": None,
    }


def restore_original(title: ReceivableTitle, today: date) -> ReceivableTitle:
    """The original as it was before negotiation: full balance, collectable again."""
    return title.model_copy(update=restore_patch(title, today))


class SettlementService:
    """Settlement lifecycle manager."""

    def __init__(
        self,
        store: Store,
        audit: AuditLogService,
        guard: OperationGuard = operation_guard,
        settings: Optional[Settings] = None,
        today: Callable[[], date] = date.today,
    ):
        self.titles = ReceivableRepository(store.receivables)
        self.settlements = SettlementRepository(store.settlements)
        self.history = HistoryRepository(store.history)
        self.audit = audit
        self.guard = guard
        self.settings = settings or get_settings()
        self.today = today

    def new_settlement_id(self) -> str:
        return f"{self.settings.settlement_id_prefix}-{uuid4().hex[:8].upper()}"

    async def create(
        self,
        client: str,
        title_ids: Sequence[str],
        agreed_amount,
        installment_count: int,
        frequency,
        first_date,
        user: Optional[str],
        settlement_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> SettlementCreated:
        """
        Negotiate ``title_ids`` into a new ACTIVE settlement.

        Raises:
            ValidationError: Bad input, nothing written
            NotFoundError: A title id does not exist, nothing written
            ConflictError: A title cannot be negotiated, nothing written
            StoreError: The settlement row could not be written
            PartialApplicationError: A later step failed
        """
        ids = list(dict.fromkeys(str(i) for i in (title_ids or [])))
        client = normalize_text(client)
        if not ids:
            raise ValidationError("At least one title must be selected", field="title_ids")
        if not client:
            raise ValidationError("Client is required", field="client")
        if installment_count is None or installment_count < 1:
            raise ValidationError("Installment count must be at least 1", field="installment_count",
                                  value=installment_count)
        try:
            amount = to_money(agreed_amount)
        except ValueError as e:
            raise ValidationError(str(e), field="agreed_amount", value=str(agreed_amount))
        if amount <= ZERO:
            raise ValidationError("Agreed amount must be positive", field="agreed_amount", value=str(amount))
        if amount < CENTS * installment_count:
            raise ValidationError(
                f"Agreed amount {amount} is less than one cent per installment",
                field="agreed_amount",
                value=str(amount),
            )
        try:
            frequency = Frequency(normalize_text(frequency))
        except ValueError:
            raise ValidationError("Unknown installment frequency", field="frequency", value=frequency)
        try:
            first = parse_date(first_date)
        except ValueError as e:
            raise ValidationError(str(e), field="first_date", value=first_date)
        if first is None:
            raise ValidationError("First installment date is required", field="first_date")

        settlement_id = settlement_id or self.new_settlement_id()
        installment_ids = [installment_title_id(settlement_id, n) for n in range(1, installment_count + 1)]
        keys = [settlement_key(settlement_id)] + [title_key(i) for i in ids + installment_ids]

        async with self.guard.hold(keys, operation="create_settlement"):
            with correlation_context(settlement_id=settlement_id), performance_timing("create_settlement"):
                if await self.settlements.get(settlement_id) is not None:
                    raise ConflictError(
                        f"Settlement {settlement_id} already exists",
                        rule_name="settlement_exists",
                        entity_id=settlement_id,
                    )

                titles = await self.titles.require_many(ids)
                originals = [titles[i] for i in ids]
                self._check_negotiable(client, originals)

                taken = await self.titles.get_many(installment_ids)
                if taken:
                    raise ConflictError(
                        f"Installment ids of settlement {settlement_id} are already in use: {', '.join(sorted(taken))}",
                        rule_name="installment_id_taken",
                        entity_id=sorted(taken)[0],
                    )

                today = self.today()
                settlement = Settlement(
                    id=settlement_id,
                    client=client,
                    original_amount=sum((t.balance for t in originals), ZERO),
                    agreed_amount=amount,
                    installment_count=installment_count,
                    frequency=frequency,
                    first_installment_date=first,
                    status=SettlementStatus.ACTIVE,
                    negotiated_title_ids=ids,
                    user=user,
                    note=note,
                )
                installments = build_installments(
                    settlement,
                    today,
                    self.settings.settlement_category,
                    self.settings.installment_payment_method,
                )
                locked = [
                    t.model_copy(update={
                        "balance": ZERO,
                        "status": TitleStatus.NEGOTIATED,
                        "collection_state": locked_state(t.collection_state),
                        "settlement_id": settlement_id,
                    })
                    for t in originals
                ]
                entry = CollectionHistoryEntry(
                    client=client,
                    action_taken=HistoryAction.AGREEMENT.value,
                    note=(
                        f"Settlement {settlement_id}: {installment_count}x {frequency.value} "
                        f"totalling {amount} replacing {', '.join(ids)}"
                        + (f". {note}" if note else "")
                    ),
                    next_action_date=first,
                    amount_due=amount,
                    days_overdue=max(days_overdue(t.due_date, today) for t in originals),
                    user=user,
                )

                plan = OperationPlan("create_settlement", settlement_id)
                plan.add_step("insert_settlement", lambda: self.settlements.insert(settlement))
                plan.add_step("lock_originals", lambda: self._lock_originals(settlement_id, originals),
                              retry_safe=True)
                plan.add_step("upsert_installments", lambda: self.titles.upsert(installments), retry_safe=True)
                plan.add_step("append_history", lambda: self.history.append(entry))
                await plan.run()

                log_business_event(
                    "settlement_created",
                    settlement_id=settlement_id,
                    client=client,
                    original_amount=str(settlement.original_amount),
                    agreed_amount=str(amount),
                    installment_count=installment_count,
                    title_count=len(ids),
                )
                await self.audit.append(
                    user,
                    "AGREEMENT_CREATED",
                    client=client,
                    details=f"Settlement {settlement_id} with {installment_count} installments replacing {len(ids)} titles",
                    amount=amount,
                )
                return SettlementCreated(settlement=settlement, installments=installments, originals=locked)

    def _check_negotiable(self, client: str, titles: List[ReceivableTitle]) -> None:
        for title in titles:
            if title.client != client:
                raise ConflictError(
                    f"Title {title.id} belongs to {title.client}, not {client}",
                    rule_name="client_mismatch",
                    entity_id=title.id,
                )
            if title.is_installment:
                raise ConflictError(
                    f"Title {title.id} is an installment of settlement {title.settlement_id}",
                    rule_name="title_is_installment",
                    entity_id=title.id,
                )
            if title.is_settlement_linked:
                raise ConflictError(
                    f"Title {title.id} is already linked to settlement {title.settlement_id}",
                    rule_name="title_already_negotiated",
                    entity_id=title.id,
                )
            if title.balance <= ZERO:
                raise ConflictError(
                    f"Title {title.id} has no outstanding balance",
                    rule_name="title_without_balance",
                    entity_id=title.id,
                )

    async def _lock_originals(self, settlement_id: str, originals: List[ReceivableTitle]) -> None:
        groups: Dict[CollectionState, List[str]] = {}
        for title in originals:
            groups.setdefault(locked_state(title.collection_state), []).append(title.id)
        for state, ids in groups.items():
            await self.titles.update_ids(ids, {
                "balance": ZERO,
                "status": TitleStatus.NEGOTIATED,
                "collection_state": state,
                "settlement_id": settlement_id,
            })

    async def _load_partition(self, settlement: Settlement) -> SettlementPartition:
        linked = await self.titles.by_settlement(settlement.id)
        listed = await self.titles.get_many(settlement.negotiated_title_ids)
        return partition_settlement_titles(settlement, linked, listed)

    @asynccontextmanager
    async def _hold_members(self, settlement: Settlement, operation: str) -> AsyncIterator[SettlementPartition]:
        """
        Hold the title key of every settlement member and yield a partition
        read while those keys are held.

        Listed ids are claimed before the first read. Linked titles outside
        the list are claimed next and the partition is read again, so every
        row written back was read under its key.
        """
        held = {title_key(i) for i in settlement.negotiated_title_ids}
        async with AsyncExitStack() as stack:
            await stack.enter_async_context(self.guard.hold(held, operation=operation))
            partition = await self._load_partition(settlement)
            extra = {title_key(t.id) for t in partition.originals + partition.installments} - held
            if extra:
                await stack.enter_async_context(self.guard.hold(extra, operation=operation))
                partition = await self._load_partition(settlement)
            yield partition

    async def _restore_originals(self, originals: List[ReceivableTitle], today: date) -> None:
        for title in originals:
            await self.titles.update_ids([title.id], restore_patch(title, today))

    async def _require_active(self, settlement_id: str) -> Settlement:
        settlement = await self.settlements.require(settlement_id)
        if not settlement.is_active:
            raise ConflictError(
                f"Settlement {settlement_id} is {settlement.status.value}, expected ACTIVE",
                rule_name="settlement_not_active",
                entity_id=settlement_id,
            )
        return settlement

    def _history_entry(
        self,
        settlement: Settlement,
        action: HistoryAction,
        note: str,
        user: Optional[str],
        amount: Decimal = ZERO,
    ) -> CollectionHistoryEntry:
        return CollectionHistoryEntry(
            client=settlement.client,
            action_taken=action.value,
            note=note,
            amount_due=amount,
            user=user,
        )

    async def finalize(self, settlement_id: str, user: Optional[str]) -> SettlementDetails:
        """
        Close a fully paid settlement and liquidate its originals.

        Raises:
            NotFoundError: Unknown settlement
            ConflictError: Settlement is not ACTIVE
            PreconditionNotMetError: Some installment is not PAID, nothing written
        """
        async with self.guard.hold([settlement_key(settlement_id)], operation="finalize_settlement"):
            with correlation_context(settlement_id=settlement_id), performance_timing("finalize_settlement"):
                settlement = await self._require_active(settlement_id)
                today = self.today()

                async with self._hold_members(settlement, "finalize_settlement") as partition:
                    if not partition.installments:
                        raise PreconditionNotMetError(
                            f"Settlement {settlement_id} has no installments",
                            settlement_id=settlement_id,
                        )
                    unpaid = [t.id for t in partition.installments if t.status != TitleStatus.PAID]
                    if unpaid:
                        raise PreconditionNotMetError(
                            f"Not all installments paid for settlement {settlement_id}",
                            settlement_id=settlement_id,
                            unpaid_installments=unpaid,
                        )

                    original_ids = [t.id for t in partition.originals]
                    entry = self._history_entry(
                        settlement,
                        HistoryAction.LIQUIDATION_TOTAL,
                        f"Settlement {settlement_id} fully paid; {len(original_ids)} titles liquidated",
                        user,
                        settlement.agreed_amount,
                    )
                    plan = OperationPlan("finalize_settlement", settlement_id)
                    plan.add_step(
                        "mark_settlement_liquidated",
                        lambda: self.settlements.set_status(settlement_id, SettlementStatus.LIQUIDATED),
                        retry_safe=True,
                    )
                    plan.add_step(
                        "liquidate_originals",
                        lambda: self.titles.update_ids(original_ids, {
                            "status": TitleStatus.LIQUIDATED,
                            "balance": ZERO,
                            "liquidation_date": today,
                            "collection_state": CollectionState.NOT_COLLECTABLE,
                        }),
                        retry_safe=True,
                    )
                    plan.add_step("append_history", lambda: self.history.append(entry))
                    await plan.run()

                settlement = settlement.model_copy(update={"status": SettlementStatus.LIQUIDATED})
                originals = [
                    t.model_copy(update={
                        "status": TitleStatus.LIQUIDATED,
                        "balance": ZERO,
                        "liquidation_date": today,
                        "collection_state": CollectionState.NOT_COLLECTABLE,
                    })
                    for t in partition.originals
                ]
                log_business_event("settlement_finalized", settlement_id=settlement_id, client=settlement.client)
                await self.audit.append(
                    user,
                    "AGREEMENT_LIQUIDATED",
                    client=settlement.client,
                    details=f"Settlement {settlement_id} finalized",
                    amount=settlement.agreed_amount,
                )
                return SettlementDetails(settlement, originals, partition.installments, partition.discrepancies)

    async def cancel(self, settlement_id: str, user: Optional[str]) -> SettlementDetails:
        """
        Cancel an ACTIVE settlement: installments are kept as CANCELLED and
        the originals are restored to their full face value.
        """
        async with self.guard.hold([settlement_key(settlement_id)], operation="cancel_settlement"):
            with correlation_context(settlement_id=settlement_id), performance_timing("cancel_settlement"):
                settlement = await self._require_active(settlement_id)
                today = self.today()

                async with self._hold_members(settlement, "cancel_settlement") as partition:
                    restored = [restore_original(t, today) for t in partition.originals]
                    installment_ids = [t.id for t in partition.installments]
                    entry = self._history_entry(
                        settlement,
                        HistoryAction.AGREEMENT_CANCELLED,
                        f"Settlement {settlement_id} cancelled; {len(restored)} titles restored",
                        user,
                        sum((t.balance for t in restored), ZERO),
                    )
                    plan = OperationPlan("cancel_settlement", settlement_id)
                    plan.add_step(
                        "cancel_installments",
                        lambda: self.titles.update_ids(installment_ids, {
                            "status": TitleStatus.CANCELLED,
                            "balance": ZERO,
                            "collection_state": CollectionState.NOT_COLLECTABLE,
                        }),
                        retry_safe=True,
                    )
                    plan.add_step(
                        "restore_originals",
                        lambda: self._restore_originals(partition.originals, today),
                        retry_safe=True,
                    )
                    plan.add_step(
                        "mark_settlement_cancelled",
                        lambda: self.settlements.set_status(settlement_id, SettlementStatus.CANCELLED),
                        retry_safe=True,
                    )
                    plan.add_step("append_history", lambda: self.history.append(entry))
                    await plan.run()

                installments = [
                    t.model_copy(update={
                        "status": TitleStatus.CANCELLED,
                        "balance": ZERO,
                        "collection_state": CollectionState.NOT_COLLECTABLE,
                    })
                    for t in partition.installments
                ]
                settlement = settlement.model_copy(update={"status": SettlementStatus.CANCELLED})
                log_business_event(
                    "settlement_cancelled",
                    settlement_id=settlement_id,
                    client=settlement.client,
                    restored=len(restored),
                )
                await self.audit.append(
                    user,
                    "AGREEMENT_CANCELLED",
                    client=settlement.client,
                    details=f"Settlement {settlement_id} cancelled, {len(restored)} titles restored",
                    amount=settlement.agreed_amount,
                )
                return SettlementDetails(settlement, restored, installments, partition.discrepancies)

    async def delete(self, settlement_id: str, user: Optional[str], confirm: bool = False) -> SettlementDetails:
        """
        Remove a settlement and its installments, restoring the originals.

        Destructive; the caller must pass ``confirm=True``.
        """
        if confirm is not True:
            raise ValidationError("Deleting a settlement requires explicit confirmation", field="confirm",
                                  value=confirm)

        async with self.guard.hold([settlement_key(settlement_id)], operation="delete_settlement"):
            with correlation_context(settlement_id=settlement_id), performance_timing("delete_settlement"):
                settlement = await self.settlements.require(settlement_id)
                if settlement.status == SettlementStatus.LIQUIDATED:
                    raise ConflictError(
                        f"Settlement {settlement_id} is liquidated and cannot be deleted",
                        rule_name="settlement_liquidated",
                        entity_id=settlement_id,
                    )
                today = self.today()

                async with self._hold_members(settlement, "delete_settlement") as partition:
                    restored = [restore_original(t, today) for t in partition.originals]
                    installment_ids = [t.id for t in partition.installments]
                    entry = self._history_entry(
                        settlement,
                        HistoryAction.AGREEMENT_DELETED,
                        f"Settlement {settlement_id} deleted; {len(restored)} titles restored",
                        user,
                        sum((t.balance for t in restored), ZERO),
                    )
                    plan = OperationPlan("delete_settlement", settlement_id)
                    plan.add_step("delete_installments", lambda: self.titles.delete_ids(installment_ids),
                                  retry_safe=True)
                    plan.add_step(
                        "restore_originals",
                        lambda: self._restore_originals(partition.originals, today),
                        retry_safe=True,
                    )
                    plan.add_step("delete_settlement", lambda: self.settlements.delete(settlement_id),
                                  retry_safe=True)
                    plan.add_step("append_history", lambda: self.history.append(entry))
                    await plan.run()

                log_business_event(
                    "settlement_deleted",
                    settlement_id=settlement_id,
                    client=settlement.client,
                    installments_removed=len(installment_ids),
                    restored=len(restored),
                )
                await self.audit.append(
                    user,
                    "AGREEMENT_DELETED",
                    client=settlement.client,
                    details=f"Settlement {settlement_id} deleted, {len(installment_ids)} installments removed",
                    amount=settlement.agreed_amount,
                )
                return SettlementDetails(settlement, restored, [], partition.discrepancies)

    async def get_details(self, settlement_id: str) -> SettlementDetails:
        settlement = await self.settlements.require(settlement_id)
        partition = await self._load_partition(settlement)
        return SettlementDetails(settlement, partition.originals, partition.installments, partition.discrepancies)

    async def list_settlements(
        self,
        status: Optional[SettlementStatus] = None,
        client: Optional[str] = None,
    ) -> List[Settlement]:
        return await self.settlements.list(status=status, client=normalize_text(client) or None)
