"""
Tests for the financial audit log.
"""
from decimal import Decimal
from unittest.mock import patch

import pytest

from receivables.core.exceptions import StoreError


class TestAuditLogService:
    @pytest.mark.asyncio
    async def test_append_and_list(self, audit, store):
        assert await audit.append("maria", "AGREEMENT_CREATED", client="ACME", details="x", amount=Decimal("120"))
        assert await audit.append(None, "IMPORT_COMMIT_PAYABLES")

        row = next(iter(store.audit.rows.values()))
        assert row["user"] == "maria"
        assert row["amount"] == 120.0

        entries = await audit.list(client="ACME")
        assert [e.action for e in entries] == ["AGREEMENT_CREATED"]
        assert {e.user for e in await audit.list()} == {"maria", "system"}

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, audit, store):
        store.audit.fail_next("insert", StoreError("audit table down"))

        with patch("receivables.services.audit_service.logger") as mock_logger:
            assert await audit.append("maria", "INSTALLMENT_LIQUIDATED", client="ACME") is False

        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args.kwargs["action"] == "INSTALLMENT_LIQUIDATED"
        assert store.audit.rows == {}
