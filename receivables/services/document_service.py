"""
Contract document client.

Sends a created settlement's schedule to the document-generation service.
Document failures never affect the settlement; callers report them.
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from receivables.core.config import get_settings
from receivables.core.exceptions import ExternalServiceError
from receivables.core.logging import get_logger
from receivables.models import ReceivableTitle, Settlement
from receivables.models.base import to_row_value

logger = get_logger(__name__)

SERVICE_NAME = "Contract Documents"


class ScheduledInstallment(BaseModel):
    sequence: int
    due_date: date
    amount: Decimal


class ContractSchedule(BaseModel):
    """What the document service needs to render a settlement contract."""

    settlement_id: str
    client: str
    original_amount: Decimal
    agreed_amount: Decimal
    frequency: str
    negotiated_title_ids: List[str]
    installments: List[ScheduledInstallment]

    @classmethod
    def from_settlement(cls, settlement: Settlement, installments: List[ReceivableTitle]) -> "ContractSchedule":
        return cls(
            settlement_id=settlement.id,
            client=settlement.client,
            original_amount=settlement.original_amount,
            agreed_amount=settlement.agreed_amount,
            frequency=settlement.frequency.value,
            negotiated_title_ids=settlement.negotiated_title_ids,
            installments=[
                ScheduledInstallment(sequence=i + 1, due_date=t.due_date, amount=t.face_value)
                for i, t in enumerate(sorted(installments, key=lambda t: (t.due_date, t.id)))
            ],
        )

    def to_payload(self) -> Dict[str, Any]:
        return to_row_value(self.model_dump())


class ContractDocumentClient:
    """Client for the contract document service."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[int] = None):
        settings = get_settings()
        self.base_url = base_url if base_url is not None else settings.document_service_url
        self.timeout = timeout or settings.document_service_timeout

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def generate(self, schedule: ContractSchedule) -> Optional[Dict[str, Any]]:
        """
        Request a contract document for a settlement schedule.

        Returns:
            The service response, or None when no service is configured

        Raises:
            ExternalServiceError: If the service is unreachable or rejects the request
        """
        if not self.enabled:
            logger.info("Contract document service not configured", settlement_id=schedule.settlement_id)
            return None

        url = f"{self.base_url.rstrip('/')}/contracts"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=schedule.to_payload())
                response.raise_for_status()
                data = response.json()
                logger.info(
                    "Contract document requested",
                    settlement_id=schedule.settlement_id,
                    status_code=response.status_code,
                )
                return data

        except httpx.TimeoutException as e:
            logger.error(
                "Timeout requesting contract document",
                settlement_id=schedule.settlement_id,
                timeout=self.timeout,
                error=str(e),
            )
            raise ExternalServiceError(SERVICE_NAME, f"Request timeout after {self.timeout} seconds")

        except httpx.HTTPStatusError as e:
            logger.error(
                "HTTP error from contract document service",
                settlement_id=schedule.settlement_id,
                status_code=e.response.status_code,
                error=str(e),
            )
            raise ExternalServiceError(
                SERVICE_NAME,
                f"Server returned {e.response.status_code}",
                status_code=e.response.status_code,
            )

        except httpx.HTTPError as e:
            logger.error(
                "Connection error to contract document service",
                settlement_id=schedule.settlement_id,
                url=url,
                error=str(e),
            )
            raise ExternalServiceError(SERVICE_NAME, f"Connection error: {str(e)}")
