"""Contracts for the systems the engine talks to.

The engine never owns candidates, users, tasks or notes. It reaches them only
through these protocols, which keeps it testable without a live database.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from hr_workflow_engine.engine.workflow.models import (
    RecordId,
    TriggerKind,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowStep,
    WorkflowStepExecution,
)
from hr_workflow_engine.engine.workflow.state_machine import ExecutionStatus, StepStatus


@dataclass(frozen=True, slots=True)
class NotificationResult:
    success: bool
    error: str | None = None


class EntityStore(Protocol):
    def get_entity(self, entity_id: RecordId) -> dict[str, Any] | None: ...

    def update_entity_status(self, entity_id: RecordId, status: str) -> None: ...

    def assign_owner(self, entity_id: RecordId, owner_id: RecordId) -> None: ...


class TaskStore(Protocol):
    def create_task(
        self,
        title: str,
        description: str | None = None,
        assignee_id: RecordId | None = None,
        related_entity_id: RecordId | None = None,
        due_date: str | None = None,
    ) -> RecordId: ...


class NoteStore(Protocol):
    def add_note(
        self, entity_id: RecordId, author_id: RecordId, content: str, kind: str
    ) -> None: ...


class NotificationTransport(Protocol):
    """Email/in-app delivery.

    Implementations must not raise: delivery problems are reported through the
    returned result.
    """

    def send(
        self, kind: str, recipient: str, template_data: Mapping[str, Any]
    ) -> NotificationResult: ...


class DefinitionStore(Protocol):
    def list_active_definitions(self, trigger_kind: TriggerKind) -> list[WorkflowDefinition]: ...

    def get_definition(self, definition_id: int) -> WorkflowDefinition | None: ...

    def get_steps(self, definition_id: int) -> list[WorkflowStep]: ...


class ExecutionStore(Protocol):
    def create_execution(
        self, *, workflow_id: int, context: dict[str, Any], started_at: datetime
    ) -> WorkflowExecution: ...

    def get_execution(self, execution_id: int) -> WorkflowExecution | None: ...

    def list_executions(
        self, *, workflow_id: int | None = None, status: ExecutionStatus | None = None
    ) -> list[WorkflowExecution]: ...

    def finish_execution(
        self,
        execution_id: int,
        *,
        status: ExecutionStatus,
        completed_at: datetime,
        error: str | None = None,
    ) -> WorkflowExecution: ...

    def create_step_execution(
        self, *, execution_id: int, step_id: int, started_at: datetime
    ) -> WorkflowStepExecution: ...

    def update_step_execution(
        self, step_execution_id: int, *, status: StepStatus, **updates: Any
    ) -> WorkflowStepExecution: ...

    def claim_due_step(
        self, step_execution_id: int, *, now: datetime
    ) -> WorkflowStepExecution | None: ...

    def list_step_executions(self, execution_id: int) -> list[WorkflowStepExecution]: ...

    def find_due_delay_steps(self, now: datetime) -> list[WorkflowStepExecution]: ...
