"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any
from unittest.mock import Mock

import pytest

from hr_workflow_engine.engine.collaborators import NotificationResult, NotificationTransport
from hr_workflow_engine.engine.records import JsonRecordStore
from hr_workflow_engine.engine.workflow.actions import (
    ActionHandlerRegistry,
    build_default_registry,
)
from hr_workflow_engine.engine.workflow.coordinator import ExecutionCoordinator
from hr_workflow_engine.engine.workflow.dispatcher import TriggerDispatcher
from hr_workflow_engine.engine.workflow.models import (
    StepKind,
    TriggerKind,
    WorkflowDefinition,
    WorkflowStep,
)
from hr_workflow_engine.engine.workflow.store import JsonDefinitionStore, JsonExecutionStore

START = datetime(2025, 3, 3, 9, 0, tzinfo=UTC)

CANDIDATE: dict[str, Any] = {
    "id": 42,
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "ada@example.com",
    "status": "Applied",
    "position": "Engineer",
    "score": 85,
}


class FrozenClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def candidate() -> dict[str, Any]:
    return dict(CANDIDATE)


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Provide a temporary state directory."""
    path = tmp_path / "workflow_state"
    path.mkdir()
    return path


@pytest.fixture
def definitions(state_dir: Path) -> JsonDefinitionStore:
    return JsonDefinitionStore(state_dir / "definitions.json")


@pytest.fixture
def executions(state_dir: Path) -> JsonExecutionStore:
    return JsonExecutionStore(state_dir / "executions.json")


@pytest.fixture
def records(state_dir: Path) -> JsonRecordStore:
    store = JsonRecordStore(state_dir / "records.json")
    store.add_entity(CANDIDATE)
    return store


@pytest.fixture
def transport() -> Mock:
    mock = Mock(spec=NotificationTransport)
    mock.send.return_value = NotificationResult(success=True)
    return mock


@pytest.fixture
def registry(records: JsonRecordStore, transport: Mock) -> ActionHandlerRegistry:
    return build_default_registry(
        entities=records, tasks=records, notes=records, transport=transport
    )


@pytest.fixture
def coordinator(
    definitions: JsonDefinitionStore,
    executions: JsonExecutionStore,
    registry: ActionHandlerRegistry,
    transport: Mock,
    clock: FrozenClock,
) -> ExecutionCoordinator:
    return ExecutionCoordinator(
        definitions=definitions,
        executions=executions,
        registry=registry,
        notifier=transport,
        clock=clock,
    )


@pytest.fixture
def dispatcher(
    definitions: JsonDefinitionStore,
    coordinator: ExecutionCoordinator,
    records: JsonRecordStore,
) -> TriggerDispatcher:
    return TriggerDispatcher(definitions=definitions, coordinator=coordinator, entities=records)


def make_step(
    workflow_id: int, order: int, kind: StepKind, config: dict[str, Any], title: str | None = None
) -> WorkflowStep:
    return WorkflowStep(
        id=workflow_id * 100 + order,
        workflow_id=workflow_id,
        order=order,
        title=title or f"Step {order}",
        kind=kind,
        config=config,
    )


DefineWorkflow = Callable[..., WorkflowDefinition]


@pytest.fixture
def define(definitions: JsonDefinitionStore) -> DefineWorkflow:
    """Save a workflow whose steps are given as `(kind, config)` or `(kind, config, title)`."""

    def _define(
        *steps: tuple[Any, ...],
        workflow_id: int = 1,
        trigger_kind: TriggerKind = TriggerKind.ENTITY_CREATED,
        trigger_conditions: dict[str, Any] | None = None,
        active: bool = True,
    ) -> WorkflowDefinition:
        definition = WorkflowDefinition(
            id=workflow_id,
            name=f"Workflow {workflow_id}",
            trigger_kind=trigger_kind,
            trigger_conditions=trigger_conditions,
            active=active,
            steps=[
                make_step(workflow_id, order, *args) for order, args in enumerate(steps, start=1)
            ],
        )
        return definitions.save_definition(definition)

    return _define
