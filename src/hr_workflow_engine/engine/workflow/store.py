"""JSON-file persistence for definitions and executions.

Each store keeps one JSON document and rewrites it on every change under a
lock. This is enough for a single engine process plus a poller thread; the
Protocols in `collaborators` are the seam for a real database.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from .models import (
    TriggerKind,
    WorkflowDefinition,
    WorkflowExecution,
    WorkflowStep,
    WorkflowStepExecution,
)
from .state_machine import (
    ExecutionStatus,
    StepStatus,
    is_terminal_step,
    transition_execution,
    transition_step,
)

logger = logging.getLogger(__name__)


class StepSequenceError(RuntimeError):
    """Raised when a step would start before the previous one finished."""


def _read_json(path: Path) -> object:
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        logger.warning(
            "State file is not valid JSON; treating as empty", extra={"path": str(path)}
        )
        return None


def _write_json(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    tmp.replace(path)


@dataclass
class JsonDefinitionStore:
    """Workflow definitions (with their steps) in one JSON list."""

    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> list[WorkflowDefinition]:
        raw = _read_json(self.path)
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning(
                "Definitions file has unexpected shape; treating as empty",
                extra={"path": str(self.path)},
            )
            return []
        return [WorkflowDefinition.model_validate(item) for item in raw]

    def _save_unlocked(self, definitions: list[WorkflowDefinition]) -> None:
        _write_json(self.path, [d.model_dump(mode="json") for d in definitions])

    def list_definitions(self) -> list[WorkflowDefinition]:
        with self._lock:
            return self._load_unlocked()

    def list_active_definitions(self, trigger_kind: TriggerKind) -> list[WorkflowDefinition]:
        return [
            d for d in self.list_definitions() if d.active and d.trigger_kind == trigger_kind
        ]

    def get_definition(self, definition_id: int) -> WorkflowDefinition | None:
        for definition in self.list_definitions():
            if definition.id == definition_id:
                return definition
        return None

    def get_steps(self, definition_id: int) -> list[WorkflowStep]:
        definition = self.get_definition(definition_id)
        return definition.ordered_steps() if definition is not None else []

    def save_definition(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """Insert a new definition.

        Definitions are immutable once their steps are attached; use
        `set_active` to switch one on or off.
        """

        with self._lock:
            definitions = self._load_unlocked()
            if any(d.id == definition.id for d in definitions):
                raise ValueError(f"Workflow {definition.id} already exists")
            definitions.append(definition)
            self._save_unlocked(definitions)
            return definition

    def set_active(self, definition_id: int, active: bool) -> WorkflowDefinition:
        with self._lock:
            definitions = self._load_unlocked()
            for idx, definition in enumerate(definitions):
                if definition.id != definition_id:
                    continue
                updated = definition.with_active(active)
                definitions[idx] = updated
                self._save_unlocked(definitions)
                return updated
            raise KeyError(definition_id)


class _ExecutionState(BaseModel):
    next_execution_id: int = 1
    next_step_execution_id: int = 1
    executions: list[WorkflowExecution] = Field(default_factory=list)
    step_executions: list[WorkflowStepExecution] = Field(default_factory=list)


@dataclass
class JsonExecutionStore:
    """Executions and their append-only step execution records."""

    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> _ExecutionState:
        raw = _read_json(self.path)
        if not isinstance(raw, dict):
            return _ExecutionState()
        return _ExecutionState.model_validate(raw)

    def _save_unlocked(self, state: _ExecutionState) -> None:
        _write_json(self.path, state.model_dump(mode="json"))

    # Executions

    def create_execution(
        self, *, workflow_id: int, context: dict[str, Any], started_at: datetime
    ) -> WorkflowExecution:
        with self._lock:
            state = self._load_unlocked()
            execution = WorkflowExecution(
                id=state.next_execution_id,
                workflow_id=workflow_id,
                status=ExecutionStatus.RUNNING,
                context=context,
                started_at=started_at,
            )
            state.next_execution_id += 1
            state.executions.append(execution)
            self._save_unlocked(state)
            return execution

    def get_execution(self, execution_id: int) -> WorkflowExecution | None:
        with self._lock:
            for execution in self._load_unlocked().executions:
                if execution.id == execution_id:
                    return execution
            return None

    def list_executions(
        self, *, workflow_id: int | None = None, status: ExecutionStatus | None = None
    ) -> list[WorkflowExecution]:
        with self._lock:
            executions = self._load_unlocked().executions
        return [
            e
            for e in executions
            if (workflow_id is None or e.workflow_id == workflow_id)
            and (status is None or e.status == status)
        ]

    def finish_execution(
        self,
        execution_id: int,
        *,
        status: ExecutionStatus,
        completed_at: datetime,
        error: str | None = None,
    ) -> WorkflowExecution:
        with self._lock:
            state = self._load_unlocked()
            for idx, execution in enumerate(state.executions):
                if execution.id != execution_id:
                    continue
                transition_execution(current=execution.status, to=status)
                updated = execution.model_copy(
                    update={"status": status, "completed_at": completed_at, "error": error}
                )
                state.executions[idx] = updated
                self._save_unlocked(state)
                return updated
            raise KeyError(execution_id)

    # Step executions

    def create_step_execution(
        self, *, execution_id: int, step_id: int, started_at: datetime
    ) -> WorkflowStepExecution:
        with self._lock:
            state = self._load_unlocked()
            for existing in state.step_executions:
                if existing.execution_id == execution_id and not is_terminal_step(existing.status):
                    raise StepSequenceError(
                        f"Execution {execution_id} still has step execution {existing.id} "
                        f"in status {existing.status.value}"
                    )
            record = WorkflowStepExecution(
                id=state.next_step_execution_id,
                execution_id=execution_id,
                step_id=step_id,
                status=StepStatus.RUNNING,
                started_at=started_at,
            )
            state.next_step_execution_id += 1
            state.step_executions.append(record)
            self._save_unlocked(state)
            return record

    def update_step_execution(
        self, step_execution_id: int, *, status: StepStatus, **updates: Any
    ) -> WorkflowStepExecution:
        with self._lock:
            state = self._load_unlocked()
            for idx, record in enumerate(state.step_executions):
                if record.id != step_execution_id:
                    continue
                transition_step(current=record.status, to=status)
                updated = record.model_copy(update={"status": status, **updates})
                state.step_executions[idx] = updated
                self._save_unlocked(state)
                return updated
            raise KeyError(step_execution_id)

    def claim_due_step(
        self, step_execution_id: int, *, now: datetime
    ) -> WorkflowStepExecution | None:
        """Atomically complete a pending delay step whose wake time has passed.

        Returns None when the step is missing, no longer pending, or not yet due,
        so two resumers sharing this store can never both continue the same
        execution. The lock is per process: separate processes polling the same
        state file are not serialized against each other.
        """

        with self._lock:
            state = self._load_unlocked()
            for idx, record in enumerate(state.step_executions):
                if record.id != step_execution_id:
                    continue
                if record.status is not StepStatus.PENDING:
                    return None
                if record.scheduled_resume_at is None or record.scheduled_resume_at > now:
                    return None
                updated = record.model_copy(
                    update={"status": StepStatus.COMPLETED, "completed_at": now}
                )
                state.step_executions[idx] = updated
                self._save_unlocked(state)
                return updated
            return None

    def list_step_executions(self, execution_id: int) -> list[WorkflowStepExecution]:
        with self._lock:
            records = self._load_unlocked().step_executions
        return [r for r in records if r.execution_id == execution_id]

    def find_due_delay_steps(self, now: datetime) -> list[WorkflowStepExecution]:
        with self._lock:
            records = self._load_unlocked().step_executions
        return [
            r
            for r in records
            if r.status is StepStatus.PENDING
            and r.scheduled_resume_at is not None
            and r.scheduled_resume_at <= now
        ]
