"""
Debtor aggregation and collection scheduling.

Per-client rollups are recomputed on every read from the current title set
and collection history. The pure functions take ``today`` explicitly; the
service only loads data and records new interactions.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional

from receivables.core.config import Settings, get_settings
from receivables.core.exceptions import ValidationError
from receivables.core.logging import get_logger, log_business_event, performance_timing
from receivables.database import HistoryRepository, ReceivableRepository, Store
from receivables.models import (
    ACTIONS_REQUIRING_DATE,
    CLOSED_STATUSES,
    CollectionHistoryEntry,
    CollectionState,
    ReceivableTitle,
)
from receivables.utils.normalize import MONEY_TOLERANCE, ZERO, days_overdue, normalize_text, parse_date

logger = get_logger(__name__)


@dataclass
class DebtorSummary:
    client: str
    total_overdue: Decimal = ZERO
    overdue_up_to_15: Decimal = ZERO
    overdue_over_15: Decimal = ZERO
    at_notary_total: Decimal = ZERO
    open_title_count: int = 0
    max_days_overdue: int = 0
    next_action_date: Optional[date] = None
    last_action: Optional[str] = None

    @property
    def sent_to_notary(self) -> bool:
        return self.at_notary_total > ZERO


@dataclass
class WorkQueues:
    due_now: List[DebtorSummary] = field(default_factory=list)
    scheduled: List[DebtorSummary] = field(default_factory=list)


@dataclass
class ClientDossier:
    client: str
    summary: Optional[DebtorSummary]
    titles: List[ReceivableTitle]
    timeline: List[CollectionHistoryEntry]


def is_collectable_debt(title: ReceivableTitle, tolerance: Decimal = MONEY_TOLERANCE) -> bool:
    """Open debt worked by normal collection: not closed, not settled, not written off."""
    return (
        title.status not in CLOSED_STATUSES
        and title.balance > tolerance
        and not title.is_settlement_linked
        and title.collection_state != CollectionState.NOT_COLLECTABLE
    )


def latest_next_action(entries: Iterable[CollectionHistoryEntry]) -> Optional[CollectionHistoryEntry]:
    """Latest entry by timestamp that carries a next-action date."""
    dated = [e for e in entries if e.next_action_date]
    if not dated:
        return None
    return max(dated, key=lambda e: e.timestamp)


def summarize_debtors(
    titles: Iterable[ReceivableTitle],
    history: Iterable[CollectionHistoryEntry],
    today: date,
    bucket_days: int = 15,
    tolerance: Decimal = MONEY_TOLERANCE,
) -> List[DebtorSummary]:
    """
    Roll titles and history into one summary per client with debt.

    Overdue collectable balances are split into the ``<= bucket_days`` and
    ``> bucket_days`` buckets, which always add up to ``total_overdue``.
    Notary exposure is reported separately and includes settlement-blocked
    titles at notary. Clients with neither are omitted.
    """
    summaries: Dict[str, DebtorSummary] = {}

    def summary_for(client: str) -> DebtorSummary:
        if client not in summaries:
            summaries[client] = DebtorSummary(client=client)
        return summaries[client]

    for title in titles:
        if title.at_notary:
            summary_for(title.client).at_notary_total += title.exposure

        if not is_collectable_debt(title, tolerance):
            continue
        summary = summary_for(title.client)
        summary.open_title_count += 1
        if not title.is_overdue(today):
            continue

        days = days_overdue(title.due_date, today)
        summary.total_overdue += title.balance
        if days <= bucket_days:
            summary.overdue_up_to_15 += title.balance
        else:
            summary.overdue_over_15 += title.balance
        summary.max_days_overdue = max(summary.max_days_overdue, days)

    by_client: Dict[str, List[CollectionHistoryEntry]] = {}
    for entry in history:
        by_client.setdefault(entry.client, []).append(entry)

    result = []
    for client, summary in summaries.items():
        if summary.total_overdue <= ZERO and summary.at_notary_total <= ZERO:
            continue
        entries = by_client.get(client, [])
        latest = latest_next_action(entries)
        summary.next_action_date = latest.next_action_date if latest else None
        if entries:
            summary.last_action = max(entries, key=lambda e: e.timestamp).action_taken
        result.append(summary)

    result.sort(key=lambda s: s.total_overdue, reverse=True)
    return result


def build_work_queues(summaries: Iterable[DebtorSummary], today: date) -> WorkQueues:
    """Clients due for collection now vs. scheduled for a future date."""
    queues = WorkQueues()
    for summary in summaries:
        if summary.next_action_date is None or summary.next_action_date <= today:
            queues.due_now.append(summary)
        else:
            queues.scheduled.append(summary)
    queues.due_now.sort(key=lambda s: s.total_overdue, reverse=True)
    queues.scheduled.sort(key=lambda s: s.total_overdue, reverse=True)
    return queues


class DebtorService:
    def __init__(
        self,
        store: Store,
        settings: Optional[Settings] = None,
        today: Callable[[], date] = date.today,
    ):
        self.titles = ReceivableRepository(store.receivables)
        self.history = HistoryRepository(store.history)
        self.settings = settings or get_settings()
        self.today = today

    async def summaries(self) -> List[DebtorSummary]:
        with performance_timing("summarize_debtors"):
            titles = await self.titles.all()
            history = await self.history.all_entries()
            return summarize_debtors(
                titles,
                history,
                self.today(),
                bucket_days=self.settings.overdue_bucket_days,
                tolerance=self.settings.money_tolerance,
            )

    async def work_queues(self) -> WorkQueues:
        return build_work_queues(await self.summaries(), self.today())

    async def client_dossier(self, client: str) -> ClientDossier:
        """Overdue collectable titles and the newest-first timeline of one client."""
        client = normalize_text(client)
        today = self.today()
        titles = await self.titles.by_client(client)
        timeline = await self.history.for_client(client)
        summaries = summarize_debtors(
            titles,
            timeline,
            today,
            bucket_days=self.settings.overdue_bucket_days,
            tolerance=self.settings.money_tolerance,
        )
        overdue = [
            t for t in titles
            if is_collectable_debt(t, self.settings.money_tolerance) and t.is_overdue(today)
        ]
        timeline.sort(key=lambda e: e.timestamp, reverse=True)
        return ClientDossier(
            client=client,
            summary=summaries[0] if summaries else None,
            titles=overdue,
            timeline=timeline,
        )

    async def record_interaction(
        self,
        client: str,
        action: str,
        note: Optional[str],
        next_action_date,
        user: Optional[str],
    ) -> CollectionHistoryEntry:
        """
        Append a collection interaction to the client's timeline.

        Raises:
            ValidationError: Missing client/action, bad date, or a follow-up
                action without a next-action date
        """
        client = normalize_text(client)
        action = normalize_text(action)
        if not client:
            raise ValidationError("Client is required", field="client")
        if not action:
            raise ValidationError("Action is required", field="action")
        try:
            next_date = parse_date(next_action_date)
        except ValueError as e:
            raise ValidationError(str(e), field="next_action_date", value=next_action_date)
        if action in ACTIONS_REQUIRING_DATE and next_date is None:
            raise ValidationError(
                f"Action {action} requires a next action date",
                field="next_action_date",
            )

        dossier = await self.client_dossier(client)
        summary = dossier.summary
        entry = CollectionHistoryEntry(
            client=client,
            action_taken=action,
            note=note,
            next_action_date=next_date,
            amount_due=summary.total_overdue if summary else ZERO,
            days_overdue=summary.max_days_overdue if summary else 0,
            user=user,
        )
        await self.history.append(entry)
        log_business_event(
            "collection_interaction_recorded",
            client=client,
            action=action,
            next_action_date=next_date.isoformat() if next_date else None,
        )
        return entry
