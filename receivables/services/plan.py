"""
Ordered multi-step write plans.

The store has no transactions, so every lifecycle operation is written as an
``OperationPlan``: a strictly sequential list of steps, each flagged
``retry_safe`` when re-running it against an already-applied state is a
no-op. The operation key (usually the settlement id) is written by the first
step and identifies partial application for repair tooling.

A failure of the first step is a clean rejection and propagates unchanged.
A failure after at least one step completed raises
``PartialApplicationError``; a step interrupted by ``CancelledError`` raises
``OperationCancelledError``. When the running task itself is being
cancelled the interruption is reported and the ``CancelledError`` propagates
unchanged, so timeouts and task groups see the cancellation. The state of the
failed step itself is unknown.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List

from receivables.core.exceptions import (
    OperationCancelledError,
    PartialApplicationError,
)
from receivables.core.logging import get_logger, log_business_event

logger = get_logger(__name__)


@dataclass
class PlanStep:
    name: str
    action: Callable[[], Awaitable[Any]]
    retry_safe: bool = False


@dataclass
class OperationPlan:
    """Sequential plan for one logical operation."""

    operation: str
    operation_key: str
    steps: List[PlanStep] = field(default_factory=list)
    completed: List[str] = field(default_factory=list)

    def add_step(self, name: str, action: Callable[[], Awaitable[Any]], retry_safe: bool = False) -> "OperationPlan":
        self.steps.append(PlanStep(name=name, action=action, retry_safe=retry_safe))
        return self

    def describe(self) -> List[dict]:
        return [{"step": s.name, "retry_safe": s.retry_safe} for s in self.steps]

    async def run(self) -> List[Any]:
        """
        Execute every step in order and return their results.

        Raises:
            StoreError: The first step failed; nothing was applied
            PartialApplicationError: A later step failed
            OperationCancelledError: A step was interrupted by cancellation
            asyncio.CancelledError: The running task was cancelled; reported first
        """
        results = []
        for step in self.steps:
            try:
                results.append(await step.action())
            except asyncio.CancelledError as e:
                self._report(step, "cancelled", str(e) or "task cancelled")
                task = asyncio.current_task()
                if task is not None and task.cancelling():
                    raise
                raise OperationCancelledError(
                    operation=self.operation,
                    operation_key=self.operation_key,
                    completed_steps=self.completed,
                    failed_step=step.name,
                    retry_safe=step.retry_safe,
                    cause="task cancelled",
                ) from e
            except Exception as e:
                if not self.completed:
                    raise
                self._report(step, "failed", str(e))
                raise PartialApplicationError(
                    operation=self.operation,
                    operation_key=self.operation_key,
                    completed_steps=self.completed,
                    failed_step=step.name,
                    retry_safe=step.retry_safe,
                    cause=str(e),
                ) from e

            self.completed.append(step.name)
            logger.debug(
                "Plan step completed",
                operation=self.operation,
                operation_key=self.operation_key,
                step=step.name,
            )
        return results

    def _report(self, step: PlanStep, outcome: str, cause: str) -> None:
        logger.error(
            "Operation interrupted",
            operation=self.operation,
            operation_key=self.operation_key,
            step=step.name,
            outcome=outcome,
            completed_steps=list(self.completed),
            retry_safe=step.retry_safe,
            cause=cause,
        )
        log_business_event(
            "operation_partially_applied",
            operation=self.operation,
            operation_key=self.operation_key,
            failed_step=step.name,
            completed_steps=list(self.completed),
        )
