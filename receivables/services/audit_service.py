"""
Financial audit log.

Audit writes are best-effort: a failed append is logged at error level and
reported to the caller as ``False``, but never undoes or fails the business
operation that triggered it.
"""

from decimal import Decimal
from typing import List, Optional

from receivables.core.logging import get_logger, get_correlation_id
from receivables.database import Store
from receivables.models import AuditLogEntry

logger = get_logger(__name__)


class AuditLogService:
    """Writes and reads the ``financial_logs`` table."""

    def __init__(self, store: Store):
        self.gateway = store.audit

    async def append(
        self,
        user: Optional[str],
        action: str,
        client: Optional[str] = None,
        details: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> bool:
        entry = AuditLogEntry(
            user=user or "system",
            action=action,
            client=client,
            details=details,
            amount=amount,
        )
        try:
            await self.gateway.insert([entry.to_row()])
        except Exception as e:
            logger.error(
                "Failed to write audit log entry",
                action=action,
                client=client,
                audit_user=entry.user,
                error=str(e),
                correlation_id=get_correlation_id(),
            )
            return False
        return True

    async def list(self, client: Optional[str] = None, limit: int = 100) -> List[AuditLogEntry]:
        filters = {"client": client} if client else None
        rows = await self.gateway.select(filters, order_by="timestamp", descending=True, limit=limit)
        return [AuditLogEntry.from_row(row) for row in rows]
