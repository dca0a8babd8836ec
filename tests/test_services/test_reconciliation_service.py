"""
Tests for import reconciliation.
"""
import asyncio
from decimal import Decimal

import pytest

from receivables.core.exceptions import ConcurrentOperationError, ReconciliationFetchError, ValidationError
from receivables.models import (
    CollectionState,
    PayableTitle,
    ReceivableTitle,
    StagingItem,
    StagingStatus,
    TitleOrigin,
    TitleStatus,
)
from receivables.services.reconciliation_service import merge_receivable


def candidate(title_id="t1", **overrides):
    values = {
        "id": title_id,
        "client": "ACME",
        "issue_date": "2023-11-01",
        "due_date": "2023-12-01",
        "face_value": "100.00",
        "balance": "100.00",
        "status": "OVERDUE",
        "category": "SALES",
        "payment_method": "BOLETO",
    }
    values.update(overrides)
    return values


def payable(title_id="p1", **overrides):
    values = {
        "id": title_id,
        "supplier": "Paper Co",
        "due_date": "2024-01-20",
        "face_value": "300.00",
        "balance": "300.00",
        "status": "OPEN",
    }
    values.update(overrides)
    return values


class TestStageReceivables:
    @pytest.mark.asyncio
    async def test_unchanged_match(self, reconciliation_service, acme_titles):
        items = await reconciliation_service.stage_receivables([candidate()])

        assert items[0].status == StagingStatus.UNCHANGED
        assert items[0].changed_fields == []

    @pytest.mark.asyncio
    async def test_balance_change_beyond_tolerance(self, reconciliation_service, acme_titles):
        items = await reconciliation_service.stage_receivables([candidate(balance="99.50")])

        assert items[0].status == StagingStatus.CHANGED
        assert items[0].changed_fields == ["balance"]

    @pytest.mark.asyncio
    async def test_balance_within_tolerance_is_unchanged(self, reconciliation_service, acme_titles):
        items = await reconciliation_service.stage_receivables([candidate(balance="99.99")])
        assert items[0].status == StagingStatus.UNCHANGED

    @pytest.mark.asyncio
    async def test_new_and_multiple_changes(self, reconciliation_service, acme_titles):
        items = await reconciliation_service.stage_receivables([
            candidate("t1", balance="0", status="PAID"),
            candidate("t9"),
            candidate("t2", client="ACME LTDA", face_value="50.00", balance="50.00",
                      due_date="2024-02-01"),
        ])

        assert [i.status for i in items] == [StagingStatus.CHANGED, StagingStatus.NEW, StagingStatus.CHANGED]
        assert items[0].changed_fields == ["balance", "status"]
        assert items[2].changed_fields == ["client", "due_date"]

    @pytest.mark.asyncio
    async def test_settlement_owned_fields_are_not_compared(
        self, reconciliation_service, settlement_service, acme_titles
    ):
        await settlement_service.create(
            "ACME", ["t1"], "100.00", 1, "MONTHLY", "2024-01-10", "maria", settlement_id="AC-1",
        )

        items = await reconciliation_service.stage_receivables([candidate()])

        assert items[0].status == StagingStatus.UNCHANGED

    @pytest.mark.asyncio
    async def test_staging_is_read_only(self, reconciliation_service, store, acme_titles):
        before = store.snapshot()
        await reconciliation_service.stage_receivables([candidate(balance="10.00"), candidate("t9")])
        assert store.snapshot() == before

    @pytest.mark.asyncio
    async def test_fetch_failure_produces_no_items(self, reconciliation_service, store, acme_titles):
        store.receivables.fail_next("select")

        with pytest.raises(ReconciliationFetchError):
            await reconciliation_service.stage_receivables([candidate()])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("batch", [
        [candidate("t1"), candidate("t1")],
        [candidate(balance="-5")],
        [candidate(client="")],
        [candidate(balance="150.00")],
    ])
    async def test_invalid_batch(self, reconciliation_service, batch):
        with pytest.raises(ValidationError) as exc_info:
            await reconciliation_service.stage_receivables(batch)

        assert exc_info.value.field == "candidates"


class TestCommitReceivables:
    @pytest.mark.asyncio
    async def test_commit_writes_pending_items(self, reconciliation_service, store, acme_titles):
        staging = await reconciliation_service.stage_receivables([
            candidate("t1", balance="40.00"),
            candidate("t2", face_value="50.00", balance="50.00", due_date="2023-12-20"),
            candidate("t9", collection_state=None),
        ])

        result = await reconciliation_service.commit_receivables(staging, "maria", file_name="jan.xlsx")

        assert result.written == ["t1", "t9"]
        assert result.skipped == ["t2"]
        assert store.receivables.get("t1")["balance"] == 40.0
        new_title = ReceivableTitle.from_row(store.receivables.get("t9"))
        assert new_title.origin == TitleOrigin.EXTERNAL_IMPORT
        assert new_title.collection_state == CollectionState.COLLECTABLE
        assert store.receivables.count("upsert") == 1

        audit = list(store.audit.rows.values())
        assert audit[-1]["action"] == "IMPORT_COMMIT_RECEIVABLES"
        assert "jan.xlsx" in audit[-1]["details"]

    @pytest.mark.asyncio
    async def test_commit_is_idempotent(self, reconciliation_service, store, acme_titles):
        staging = await reconciliation_service.stage_receivables([
            candidate("t1", balance="40.00"),
            candidate("t9"),
        ])

        await reconciliation_service.commit_receivables(staging, "maria")
        once = store.snapshot()["accounts_receivable"]
        await reconciliation_service.commit_receivables(staging, "maria")

        assert store.snapshot()["accounts_receivable"] == once

        restaged = await reconciliation_service.stage_receivables([candidate("t1", balance="40.00"), candidate("t9")])
        assert [i.status for i in restaged] == [StagingStatus.UNCHANGED, StagingStatus.UNCHANGED]

    @pytest.mark.asyncio
    async def test_commit_preserves_notary_state(self, reconciliation_service, notary_service, store, acme_titles):
        await notary_service.send_to_notary(["t1"], "maria")
        staging = await reconciliation_service.stage_receivables([candidate("t1", balance="60.00")])

        await reconciliation_service.commit_receivables(staging, "maria")

        title = ReceivableTitle.from_row(store.receivables.get("t1"))
        assert title.balance == Decimal("60.00")
        assert title.collection_state == CollectionState.AT_NOTARY

    @pytest.mark.asyncio
    async def test_commit_never_unlocks_negotiated_original(
        self, reconciliation_service, settlement_service, store, acme_titles
    ):
        await settlement_service.create(
            "ACME", ["t1"], "100.00", 1, "MONTHLY", "2024-01-10", "maria", settlement_id="AC-1",
        )
        staging = await reconciliation_service.stage_receivables([
            candidate("t1", face_value="110.00", balance="110.00"),
        ])
        assert staging[0].changed_fields == ["face_value"]

        result = await reconciliation_service.commit_receivables(staging, "maria")

        title = ReceivableTitle.from_row(store.receivables.get("t1"))
        assert result.protected == ["t1"]
        assert title.face_value == Decimal("110.00")
        assert title.balance == Decimal("0")
        assert title.status == TitleStatus.NEGOTIATED
        assert title.settlement_id == "AC-1"
        assert title.collection_state == CollectionState.BLOCKED_BY_SETTLEMENT

    @pytest.mark.asyncio
    async def test_settlement_refused_while_commit_in_flight(
        self, reconciliation_service, settlement_service, guard, store, acme_titles
    ):
        staging = await reconciliation_service.stage_receivables([candidate("t1", balance="90.00")])
        pause = store.receivables.pause_next("select")

        committing = asyncio.create_task(reconciliation_service.commit_receivables(staging, "maria"))
        await pause.reached.wait()
        with pytest.raises(ConcurrentOperationError):
            await settlement_service.create(
                "ACME", ["t1"], "90.00", 1, "MONTHLY", "2024-01-10", "maria", settlement_id="AC-2",
            )
        pause.release.set()
        result = await committing

        title = ReceivableTitle.from_row(store.receivables.get("t1"))
        assert result.written == ["t1"]
        assert title.balance == Decimal("90.00")
        assert title.settlement_id is None
        assert store.settlements.rows == {}
        assert guard.held_keys == set()

    @pytest.mark.asyncio
    async def test_commit_refused_while_title_in_flight(self, reconciliation_service, guard, store, acme_titles):
        staging = await reconciliation_service.stage_receivables([candidate("t1", balance="90.00")])
        before = store.snapshot()

        async with guard.hold(["title:t1"], operation="create_settlement"):
            with pytest.raises(ConcurrentOperationError):
                await reconciliation_service.commit_receivables(staging, "maria")

        assert store.snapshot() == before

    @pytest.mark.asyncio
    async def test_nothing_pending_writes_nothing(self, reconciliation_service, store, acme_titles):
        staging = await reconciliation_service.stage_receivables([candidate()])

        result = await reconciliation_service.commit_receivables(staging, "maria")

        assert result.written == []
        assert result.skipped == ["t1"]
        assert store.receivables.count("upsert") == 0
        assert store.audit.rows == {}

    @pytest.mark.asyncio
    async def test_payable_item_in_receivable_commit(self, reconciliation_service):
        item = StagingItem(data=PayableTitle.model_validate(payable()), status=StagingStatus.NEW)

        with pytest.raises(ValidationError):
            await reconciliation_service.commit_receivables([item], "maria")


class TestMergeReceivable:
    def test_new_title_defaults(self):
        merged = merge_receivable(ReceivableTitle.model_validate(candidate(settlement_id="AC-X")), None)

        assert merged.settlement_id is None
        assert merged.origin == TitleOrigin.EXTERNAL_IMPORT
        assert merged.collection_state == CollectionState.COLLECTABLE


class TestPayables:
    @pytest.mark.asyncio
    async def test_stage_and_commit(self, reconciliation_service, store):
        store.payables.seed(PayableTitle.model_validate(payable()).to_row())

        staging = await reconciliation_service.stage_payables([
            payable(supplier="Paper Company"),
            payable("p2"),
        ])

        assert [i.status for i in staging] == [StagingStatus.CHANGED, StagingStatus.NEW]
        assert staging[0].changed_fields == ["supplier"]

        result = await reconciliation_service.commit_payables(staging, "maria")

        assert result.written == ["p1", "p2"]
        assert store.payables.get("p1")["supplier"] == "PAPER COMPANY"
        assert [a["action"] for a in store.audit.rows.values()] == ["IMPORT_COMMIT_PAYABLES"]

    @pytest.mark.asyncio
    async def test_unchanged_payable(self, reconciliation_service, store):
        store.payables.seed(PayableTitle.model_validate(payable()).to_row())

        staging = await reconciliation_service.stage_payables([payable(balance="299.99")])

        assert staging[0].status == StagingStatus.UNCHANGED
