"""
Saga Pattern helper - ordered steps with compensating actions

A saga is a list of (action, compensation) pairs executed in order. When an
action reports failure (returns a falsy value) or raises, the compensations
of every step that already completed are run in reverse order.

    saga = Saga(f"checkout:{order_id}")
    saga.step("persist_order", create_order, delete_order)
    saga.step("decrement:P1", decrement_p1, increment_p1)
    result = await saga.run()

Compensation failures are logged at CRITICAL and swallowed: the remaining
compensations still run and the caller sees the original failure. Exceptions
raised by an action are re-raised after compensating, so unexpected faults
still reach the top-level handler.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any]]


@dataclass
class SagaStep:
    """One unit of work and the operation that undoes it"""
    name: str
    action: Action
    compensation: Optional[Action] = None


@dataclass
class SagaResult:
    """Outcome of a saga run"""
    success: bool
    failed_step: Optional[str] = None
    error: Optional[str] = None
    completed_steps: List[str] = field(default_factory=list)
    compensated_steps: List[str] = field(default_factory=list)
    failed_compensations: List[str] = field(default_factory=list)
    results: Dict[str, Any] = field(default_factory=dict)


class Saga:
    """Runs steps in order and rolls back completed steps on failure"""

    def __init__(self, name: str):
        self.name = name
        self._steps: List[SagaStep] = []

    def step(self, name: str, action: Action, compensation: Optional[Action] = None) -> "Saga":
        self._steps.append(SagaStep(name, action, compensation))
        return self

    @property
    def steps(self) -> List[SagaStep]:
        return list(self._steps)

    async def run(self) -> SagaResult:
        result = SagaResult(success=False)
        completed: List[SagaStep] = []

        for step in self._steps:
            try:
                outcome = await step.action()
            except Exception as e:
                logger.error(f"Saga {self.name}: step '{step.name}' raised {e!r}, compensating")
                await self._compensate(completed, result)
                raise

            if not outcome:
                logger.warning(f"Saga {self.name}: step '{step.name}' failed, compensating")
                result.failed_step = step.name
                result.error = f"Step '{step.name}' failed"
                await self._compensate(completed, result)
                return result

            result.results[step.name] = outcome
            result.completed_steps.append(step.name)
            completed.append(step)

        result.success = True
        return result

    async def _compensate(self, completed: List[SagaStep], result: SagaResult) -> None:
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                await step.compensation()
                result.compensated_steps.append(step.name)
            except Exception as e:
                # Needs manual intervention; remaining compensations still run
                result.failed_compensations.append(step.name)
                logger.critical(
                    f"CRITICAL: Saga {self.name} compensation for '{step.name}' FAILED: {e!r}. "
                    f"Manual intervention required."
                )
