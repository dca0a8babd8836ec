"""
Custom exception classes for the Receivables Lifecycle Service.

Domain errors are raised by the services and carry an error code and a
context dictionary. Routers convert them to HTTP errors with
``map_domain_error``.
"""
import uuid
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status


class BaseAPIException(HTTPException):
    """Base exception for API errors."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.detail,
            "correlation_id": self.correlation_id,
            "context": self.context,
        }


class ReceivablesError(Exception):
    """Base exception for receivables domain errors."""

    error_code = "REC_000"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str, **context):
        self.detail = detail
        self.context = context
        super().__init__(detail)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.detail,
            "context": self.context,
        }


class ValidationError(ReceivablesError):
    """Bad input rejected before any mutation."""

    error_code = "REC_001"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, detail: str, field: Optional[str] = None, value: Optional[Any] = None, **context):
        self.field = field
        self.value = value
        if field:
            self.error_code = f"REC_001_{field.upper()}"
            detail = f"Validation failed for field '{field}': {detail}"
        super().__init__(detail, field=field, value=value, **context)


class NotFoundError(ReceivablesError):
    """Referenced settlement or title does not exist."""

    error_code = "REC_002"
    http_status = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_ids: List[str], **context):
        self.entity = entity
        self.entity_ids = list(entity_ids)
        detail = f"{entity} not found: {', '.join(self.entity_ids)}"
        super().__init__(detail, entity=entity, entity_ids=self.entity_ids, **context)


class ConflictError(ReceivablesError):
    """Current state forbids the requested transition."""

    error_code = "REC_003"
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, detail: str, rule_name: Optional[str] = None, entity_id: Optional[str] = None, **context):
        self.rule_name = rule_name
        self.entity_id = entity_id
        if rule_name:
            self.error_code = f"REC_003_{rule_name.upper()}"
        super().__init__(detail, rule_name=rule_name, entity_id=entity_id, **context)


class ConcurrentOperationError(ConflictError):
    """Another operation on the same key is already in flight."""

    def __init__(self, key: str, operation: Optional[str] = None):
        self.key = key
        super().__init__(
            f"Operation refused: another operation is in flight for '{key}'",
            rule_name="concurrent",
            entity_id=key,
            operation=operation,
        )


class PreconditionNotMetError(ReceivablesError):
    """Operation requested before its precondition holds."""

    error_code = "REC_004"
    http_status = status.HTTP_409_CONFLICT


class StoreError(ReceivablesError):
    """Persistence collaborator failure."""

    error_code = "REC_005"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    partially_applied = False

    def __init__(self, detail: str, operation: Optional[str] = None, table: Optional[str] = None, **context):
        self.operation = operation
        self.table = table
        super().__init__(detail, operation=operation, table=table, **context)


class ReconciliationFetchError(StoreError):
    """Persisted records could not be fetched; the batch must be retried whole."""


class PartialApplicationError(StoreError):
    """
    A multi-step operation failed after at least one write was applied.

    The store is left in the state described by ``completed_steps``; the
    caller must run a repair (cancel/delete or a targeted retry of
    ``failed_step`` when ``retry_safe`` is true).
    """

    error_code = "REC_006"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    partially_applied = True

    def __init__(
        self,
        operation: str,
        operation_key: str,
        completed_steps: List[str],
        failed_step: str,
        retry_safe: bool,
        cause: Optional[str] = None,
    ):
        self.operation_key = operation_key
        self.completed_steps = list(completed_steps)
        self.failed_step = failed_step
        self.retry_safe = retry_safe
        detail = (
            f"Operation '{operation}' for '{operation_key}' partially applied: "
            f"step '{failed_step}' failed after {self.completed_steps}"
        )
        super().__init__(
            detail,
            operation=operation,
            operation_key=operation_key,
            completed_steps=self.completed_steps,
            failed_step=failed_step,
            retry_safe=retry_safe,
            cause=cause,
            partially_applied=True,
        )


class OperationCancelledError(PartialApplicationError):
    """The running task was cancelled between two steps of an operation."""

    error_code = "REC_006_CANCELLED"


class ExternalServiceError(Exception):
    """Exception for external collaborator call errors."""

    def __init__(
        self,
        service_name: str,
        message: str,
        status_code: Optional[int] = None,
        **context
    ):
        self.service_name = service_name
        self.status_code = status_code
        self.context = context
        super().__init__(f"[{service_name}] {message}")


def map_domain_error(error: ReceivablesError) -> BaseAPIException:
    """Map a domain error to the API exception returned by the routers."""
    return BaseAPIException(
        status_code=error.http_status,
        detail=error.detail,
        error_code=error.error_code,
        context=error.context,
    )
