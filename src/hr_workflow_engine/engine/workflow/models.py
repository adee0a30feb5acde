"""Persisted workflow records.

Definitions and steps are authored elsewhere (a workflow editor) and are
read-only to the engine, apart from the active flag. Executions and step
executions are the engine's own append-only audit trail.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .state_machine import ExecutionStatus, StepStatus

RecordId = int | str


class _LenientEnum(str, Enum):
    """Also accepts `EntityCreated` or `ENTITY_CREATED` spellings of a value."""

    @classmethod
    def _missing_(cls, value: object) -> _LenientEnum | None:
        if not isinstance(value, str):
            return None
        wanted = value.replace("_", "").replace("-", "").lower()
        for member in cls:
            if member.value.replace("_", "") == wanted:
                return member
        return None


class TriggerKind(_LenientEnum):
    ENTITY_CREATED = "entity_created"
    STAGE_CHANGED = "stage_changed"
    ACTIVITY_COMPLETED = "activity_completed"


class StepKind(_LenientEnum):
    ACTION = "action"
    CONDITION = "condition"
    DELAY = "delay"
    NOTIFICATION = "notification"


class ActionKind(_LenientEnum):
    SEND_NOTIFICATION = "send_notification"
    UPDATE_ENTITY_STATUS = "update_entity_status"
    ASSIGN_OWNER = "assign_owner"
    CREATE_TASK = "create_task"
    ADD_NOTE = "add_note"


class DelayUnit(_LenientEnum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class WorkflowStep(BaseModel):
    """One unit of work inside a definition.

    `config` is interpreted only by the executor branch matching `kind`; action
    steps name their handler under `config["action_type"]`.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    workflow_id: int
    order: int
    title: str
    description: str | None = None
    kind: StepKind
    config: dict[str, Any] = Field(default_factory=dict)


class WorkflowDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str | None = None
    trigger_kind: TriggerKind
    trigger_conditions: dict[str, Any] | None = None
    active: bool = True
    steps: list[WorkflowStep] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_steps(self) -> WorkflowDefinition:
        seen: set[int] = set()
        for step in self.steps:
            if step.workflow_id != self.id:
                raise ValueError(
                    f"step {step.id} belongs to workflow {step.workflow_id}, not {self.id}"
                )
            if step.order in seen:
                raise ValueError(f"duplicate step order {step.order} in workflow {self.id}")
            seen.add(step.order)
        return self

    def ordered_steps(self) -> list[WorkflowStep]:
        return sorted(self.steps, key=lambda s: s.order)

    def with_active(self, active: bool) -> WorkflowDefinition:
        return self.model_copy(update={"active": active})


class WorkflowExecution(BaseModel):
    id: int
    workflow_id: int
    status: ExecutionStatus = ExecutionStatus.RUNNING
    context: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime
    completed_at: datetime | None = None
    error: str | None = None


class WorkflowStepExecution(BaseModel):
    id: int
    execution_id: int
    step_id: int
    status: StepStatus = StepStatus.RUNNING
    result: dict[str, Any] | None = None
    error: str | None = None

    # Keys an action handler asked to change; replayed in order to rebuild the
    # context when a suspended execution resumes.
    context_updates: dict[str, Any] | None = None

    started_at: datetime
    completed_at: datetime | None = None
    scheduled_resume_at: datetime | None = None
