"""
In-flight guard for lifecycle operations.

At most one operation may run per key (``settlement:<id>`` or
``title:<id>``). A second caller is refused with
``ConcurrentOperationError`` instead of waiting, so a violated
serialization discipline surfaces as an error rather than a lost update.
The guard is process-local; deployments running several workers must
serialize per settlement id in front of the service.
"""
from contextlib import asynccontextmanager
from typing import Iterable, Optional, Set

from receivables.core.exceptions import ConcurrentOperationError
from receivables.core.logging import get_logger

logger = get_logger(__name__)


def settlement_key(settlement_id: str) -> str:
    return f"settlement:{settlement_id}"


def title_key(title_id: str) -> str:
    return f"title:{title_id}"


class OperationGuard:
    """Registry of keys currently held by an in-flight operation."""

    def __init__(self):
        self._held: Set[str] = set()

    def is_held(self, key: str) -> bool:
        return key in self._held

    @property
    def held_keys(self) -> Set[str]:
        return set(self._held)

    @asynccontextmanager
    async def hold(self, keys: Iterable[str], operation: Optional[str] = None):
        """
        Hold every key for the duration of the block.

        Keys are claimed all-or-nothing; nothing is awaited between the check
        and the claim so the event loop cannot interleave another claimant.
        """
        wanted = sorted(set(keys))
        busy = [key for key in wanted if key in self._held]
        if busy:
            logger.warning(
                "Refusing concurrent operation",
                operation=operation,
                busy_keys=busy,
            )
            raise ConcurrentOperationError(busy[0], operation=operation)

        self._held.update(wanted)
        try:
            yield
        finally:
            self._held.difference_update(wanted)


operation_guard = OperationGuard()
