"""Unit tests for single-step execution."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any
from unittest.mock import Mock

import pytest

from hr_workflow_engine.engine.collaborators import NotificationResult
from hr_workflow_engine.engine.workflow.actions import ActionHandlerRegistry, StepResult
from hr_workflow_engine.engine.workflow.context import ExecutionContext
from hr_workflow_engine.engine.workflow.models import ActionKind, StepKind, WorkflowStep
from hr_workflow_engine.engine.workflow.steps import (
    BROADCAST_RECIPIENT,
    IN_APP_NOTIFICATION,
    StepExecutor,
)


def _step(kind: StepKind, config: dict[str, Any]) -> WorkflowStep:
    return WorkflowStep(id=1, workflow_id=1, order=1, title="Step", kind=kind, config=config)


@pytest.fixture
def executor(registry: ActionHandlerRegistry, transport: Mock, clock: Any) -> StepExecutor:
    return StepExecutor(registry=registry, notifier=transport, clock=clock)


@pytest.fixture
def context(candidate: dict[str, Any]) -> ExecutionContext:
    return ExecutionContext({"entity_id": 42, "entity": candidate, "actor_id": 5})


def test_action_step_requires_action_type(
    executor: StepExecutor, context: ExecutionContext
) -> None:
    result = executor.run_step(_step(StepKind.ACTION, {}), context)

    assert not result.success
    assert result.error == "action_type configuration required for action steps"


def test_action_step_with_unknown_type_fails(
    executor: StepExecutor, context: ExecutionContext
) -> None:
    result = executor.run_step(_step(StepKind.ACTION, {"action_type": "frobnicate"}), context)

    assert not result.success
    assert result.error == "Unknown action type: frobnicate"


def test_action_step_dispatches_to_registered_handler(
    transport: Mock, clock: Any, context: ExecutionContext
) -> None:
    handler = Mock()
    handler.execute.return_value = StepResult.ok({"done": True})
    registry = ActionHandlerRegistry({ActionKind.ADD_NOTE: handler})
    executor = StepExecutor(registry=registry, notifier=transport, clock=clock)
    config = {"action_type": "add_note", "content": "hi"}

    result = executor.run_step(_step(StepKind.ACTION, config), context)

    assert result.data == {"done": True}
    handler.execute.assert_called_once_with(config, context)


def test_handler_exception_becomes_failed_result(
    transport: Mock, clock: Any, context: ExecutionContext
) -> None:
    handler = Mock()
    handler.execute.side_effect = RuntimeError("database unavailable")
    registry = ActionHandlerRegistry({ActionKind.CREATE_TASK: handler})
    executor = StepExecutor(registry=registry, notifier=transport, clock=clock)

    result = executor.run_step(
        _step(StepKind.ACTION, {"action_type": "create_task", "title": "x"}), context
    )

    assert not result.success
    assert result.error == "database unavailable"
    assert not result.should_continue


def test_condition_without_expression_continues(
    executor: StepExecutor, context: ExecutionContext
) -> None:
    result = executor.run_step(_step(StepKind.CONDITION, {}), context)

    assert result.success
    assert result.should_continue


@pytest.mark.parametrize(
    ("expression", "expected"), [("entity.score > 80", True), ("entity.score > 90", False)]
)
def test_condition_records_result(
    executor: StepExecutor, context: ExecutionContext, expression: str, expected: bool
) -> None:
    result = executor.run_step(_step(StepKind.CONDITION, {"expression": expression}), context)

    assert result.success
    assert result.should_continue is expected
    assert result.data == {"expression_result": expected}


def test_condition_error_fails_step(executor: StepExecutor, context: ExecutionContext) -> None:
    result = executor.run_step(
        _step(StepKind.CONDITION, {"expression": "entity.score > 'high'"}), context
    )

    assert not result.success
    assert result.error is not None
    assert result.error.startswith("Condition evaluation error: ")


@pytest.mark.parametrize(
    ("config", "delta"),
    [
        ({"duration": 30, "unit": "minutes"}, timedelta(minutes=30)),
        ({"duration": 2, "unit": "hours"}, timedelta(hours=2)),
        ({"duration": 3, "unit": "days"}, timedelta(days=3)),
    ],
)
def test_delay_computes_resume_time(
    executor: StepExecutor,
    context: ExecutionContext,
    clock: Any,
    config: dict[str, Any],
    delta: timedelta,
) -> None:
    result = executor.run_step(_step(StepKind.DELAY, config), context)

    assert result.success
    assert result.data is not None
    assert datetime.fromisoformat(result.data["scheduled_resume_at"]) == clock() + delta


@pytest.mark.parametrize(
    "config",
    [
        {"duration": 0, "unit": "hours"},
        {"duration": 2, "unit": "fortnights"},
        {"unit": "days"},
    ],
)
def test_delay_rejects_invalid_config(
    executor: StepExecutor, context: ExecutionContext, config: dict[str, Any]
) -> None:
    result = executor.run_step(_step(StepKind.DELAY, config), context)

    assert not result.success
    assert result.error is not None
    assert result.error.startswith("invalid delay configuration")


def test_notification_recipient_precedence(
    executor: StepExecutor, transport: Mock, context: ExecutionContext
) -> None:
    executor.run_step(
        _step(StepKind.NOTIFICATION, {"title": "Hi", "message": "New hire", "user_id": 9}),
        context,
    )
    executor.run_step(_step(StepKind.NOTIFICATION, {"title": "Hi", "message": "New hire"}), context)
    executor.run_step(
        _step(StepKind.NOTIFICATION, {"title": "Hi", "message": "New hire"}),
        ExecutionContext({"entity_id": 42}),
    )

    recipients = [c.args[1] for c in transport.send.call_args_list]
    assert recipients == ["9", "5", BROADCAST_RECIPIENT]
    kind, _, data = transport.send.call_args_list[0].args
    assert kind == IN_APP_NOTIFICATION
    assert data == {"title": "Hi", "message": "New hire", "entity_id": 42}


def test_notification_requires_message(
    executor: StepExecutor, transport: Mock, context: ExecutionContext
) -> None:
    result = executor.run_step(_step(StepKind.NOTIFICATION, {"title": "Hi"}), context)

    assert not result.success
    transport.send.assert_not_called()


def test_notification_transport_failure(
    executor: StepExecutor, transport: Mock, context: ExecutionContext
) -> None:
    transport.send.return_value = NotificationResult(success=False, error="queue full")

    result = executor.run_step(
        _step(StepKind.NOTIFICATION, {"title": "Hi", "message": "x"}), context
    )

    assert not result.success
    assert result.error == "notification delivery failed: queue full"
