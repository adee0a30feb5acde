"""Unit tests for execution and step status transitions.

Illegal transitions must fail loudly; terminal states are never left.
"""

from __future__ import annotations

import pytest

from hr_workflow_engine.engine.workflow.state_machine import (
    ExecutionStatus,
    IllegalTransitionError,
    StepStatus,
    is_terminal_step,
    transition_execution,
    transition_step,
)


@pytest.mark.parametrize("to", [ExecutionStatus.COMPLETED, ExecutionStatus.FAILED])
def test_running_execution_can_finish(to: ExecutionStatus) -> None:
    assert transition_execution(current=ExecutionStatus.RUNNING, to=to) is to


@pytest.mark.parametrize("current", [ExecutionStatus.COMPLETED, ExecutionStatus.FAILED])
@pytest.mark.parametrize("to", list(ExecutionStatus))
def test_finished_execution_never_changes(current: ExecutionStatus, to: ExecutionStatus) -> None:
    with pytest.raises(IllegalTransitionError):
        transition_execution(current=current, to=to)


def test_step_may_suspend_then_finish() -> None:
    assert transition_step(current=StepStatus.RUNNING, to=StepStatus.PENDING) is StepStatus.PENDING
    assert (
        transition_step(current=StepStatus.PENDING, to=StepStatus.COMPLETED)
        is StepStatus.COMPLETED
    )


def test_pending_step_cannot_return_to_running() -> None:
    with pytest.raises(IllegalTransitionError, match="pending -> running"):
        transition_step(current=StepStatus.PENDING, to=StepStatus.RUNNING)


def test_terminal_steps() -> None:
    assert is_terminal_step(StepStatus.COMPLETED)
    assert is_terminal_step(StepStatus.FAILED)
    assert not is_terminal_step(StepStatus.PENDING)
    assert not is_terminal_step(StepStatus.RUNNING)
