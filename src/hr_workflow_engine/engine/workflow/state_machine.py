"""Status state machines for executions and step executions.

Execution status is monotonic: once an execution leaves RUNNING it never
returns. Step executions additionally pass through PENDING while suspended on
a delay.
"""

from __future__ import annotations

from enum import Enum


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_EXECUTION_TRANSITIONS: dict[ExecutionStatus, set[ExecutionStatus]] = {
    ExecutionStatus.RUNNING: {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED},
    ExecutionStatus.COMPLETED: set(),
    ExecutionStatus.FAILED: set(),
}

ALLOWED_STEP_TRANSITIONS: dict[StepStatus, set[StepStatus]] = {
    StepStatus.RUNNING: {StepStatus.COMPLETED, StepStatus.FAILED, StepStatus.PENDING},
    StepStatus.PENDING: {StepStatus.COMPLETED, StepStatus.FAILED},
    StepStatus.COMPLETED: set(),
    StepStatus.FAILED: set(),
}

TERMINAL_STEP_STATUSES: frozenset[StepStatus] = frozenset(
    {StepStatus.COMPLETED, StepStatus.FAILED}
)


class IllegalTransitionError(ValueError):
    pass


def transition_execution(*, current: ExecutionStatus, to: ExecutionStatus) -> ExecutionStatus:
    allowed = ALLOWED_EXECUTION_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(
            f"Illegal execution transition: {current.value} -> {to.value}"
        )
    return to


def transition_step(*, current: StepStatus, to: StepStatus) -> StepStatus:
    allowed = ALLOWED_STEP_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal step transition: {current.value} -> {to.value}")
    return to


def is_terminal_step(status: StepStatus) -> bool:
    return status in TERMINAL_STEP_STATUSES
