"""Installment liquidation: records the payment of one settlement installment."""

from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from receivables.core.exceptions import ConflictError, StoreError, ValidationError
from receivables.core.locks import OperationGuard, operation_guard, settlement_key, title_key
from receivables.core.logging import correlation_context, get_logger, log_business_event
from receivables.database import ReceivableRepository, Store
from receivables.models import InstallmentTitle, ReceivableTitle, TitleStatus, classify_title
from receivables.services.audit_service import AuditLogService
from receivables.utils.normalize import ZERO, normalize_text, parse_date

logger = get_logger(__name__)


@dataclass
class LiquidationResult:
    installment: ReceivableTitle
    settlement_fully_paid: Optional[bool]


class LiquidationService:
    def __init__(
        self,
        store: Store,
        audit: AuditLogService,
        guard: OperationGuard = operation_guard,
        today: Callable[[], date] = date.today,
    ):
        self.titles = ReceivableRepository(store.receivables)
        self.audit = audit
        self.guard = guard
        self.today = today

    async def liquidate(
        self,
        installment_id: str,
        payment_date,
        method: str,
        user: Optional[str],
    ) -> LiquidationResult:
        """
        Mark an OPEN installment as PAID.

        Raises:
            ValidationError: Bad payment date or method
            NotFoundError: Unknown title
            ConflictError: Title is not an installment, or is not OPEN
        """
        try:
            paid_on = parse_date(payment_date) or self.today()
        except ValueError as e:
            raise ValidationError(str(e), field="payment_date", value=payment_date)
        method = normalize_text(method)
        if not method:
            raise ValidationError("Receipt method is required", field="method")

        variant = self._installment(await self.titles.require(installment_id))
        keys = [title_key(installment_id), settlement_key(variant.settlement_id)]
        async with self.guard.hold(keys, operation="liquidate_installment"):
            with correlation_context(settlement_id=variant.settlement_id):
                # Re-read inside the guard; the first read only located the settlement
                title = self._installment(await self.titles.require(installment_id)).title
                if title.status != TitleStatus.OPEN:
                    raise ConflictError(
                        f"Installment {installment_id} is {title.status.value}, expected OPEN",
                        rule_name="installment_not_open",
                        entity_id=installment_id,
                    )

                values = {
                    "status": TitleStatus.PAID,
                    "balance": ZERO,
                    "received_amount": title.face_value,
                    "liquidation_date": paid_on,
                    "receipt_method": method,
                }
                await self.titles.update_ids([installment_id], values)
                paid = title.model_copy(update=values)

                fully_paid = await self._settlement_fully_paid(title.settlement_id, installment_id)

                log_business_event(
                    "installment_liquidated",
                    installment_id=installment_id,
                    settlement_id=title.settlement_id,
                    amount=str(title.face_value),
                    method=method,
                    settlement_fully_paid=fully_paid,
                )
                await self.audit.append(
                    user,
                    "INSTALLMENT_LIQUIDATED",
                    client=title.client,
                    details=f"Installment {installment_id} of settlement {title.settlement_id} paid via {method}",
                    amount=title.face_value,
                )
                return LiquidationResult(installment=paid, settlement_fully_paid=fully_paid)

    @staticmethod
    def _installment(title: ReceivableTitle) -> InstallmentTitle:
        try:
            variant = classify_title(title)
        except ValueError as e:
            raise ConflictError(str(e), rule_name="not_an_installment", entity_id=title.id)
        if not isinstance(variant, InstallmentTitle):
            raise ConflictError(
                f"Title {title.id} is not a settlement installment",
                rule_name="not_an_installment",
                entity_id=title.id,
            )
        return variant

    async def _settlement_fully_paid(self, settlement_id: str, paid_id: str) -> Optional[bool]:
        """None when the sibling read fails; the payment itself is already stored."""
        try:
            siblings = await self.titles.by_settlement(settlement_id)
        except StoreError as e:
            logger.warning("Could not check remaining installments", settlement_id=settlement_id, error=e.detail)
            return None
        installments = [t for t in siblings if t.is_installment]
        return all(t.status == TitleStatus.PAID or t.id == paid_id for t in installments)
