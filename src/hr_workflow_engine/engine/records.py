"""Local stand-ins for the platform's record systems.

The engine only needs entities, tasks, notes and a notification channel. When
it runs outside the platform (the CLI, tests, demos) these live in one JSON
document next to the execution state, and notifications are written to the
log instead of being delivered.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from hr_workflow_engine.engine.collaborators import NotificationResult
from hr_workflow_engine.engine.workflow.models import RecordId

logger = logging.getLogger(__name__)


class TaskRecord(BaseModel):
    id: int
    title: str
    description: str | None = None
    assignee_id: RecordId | None = None
    related_entity_id: RecordId | None = None
    due_date: str | None = None


class NoteRecord(BaseModel):
    id: int
    entity_id: RecordId
    author_id: RecordId
    content: str
    kind: str


class _RecordState(BaseModel):
    entities: list[dict[str, Any]] = Field(default_factory=list)
    tasks: list[TaskRecord] = Field(default_factory=list)
    notes: list[NoteRecord] = Field(default_factory=list)


def _same_id(left: object, right: RecordId) -> bool:
    # Ids typed on the command line arrive as strings.
    return left is not None and str(left) == str(right)


@dataclass
class JsonRecordStore:
    """Entities, tasks and notes in a single JSON document.

    Entities are free-form dicts that must carry an `id`; the engine reads
    `email`, `first_name`, `status` and `position` when present.
    """

    path: Path

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _load_unlocked(self) -> _RecordState:
        if not self.path.exists():
            return _RecordState()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(
                "Record file is not valid JSON; treating as empty", extra={"path": str(self.path)}
            )
            return _RecordState()
        if not isinstance(raw, dict):
            return _RecordState()
        return _RecordState.model_validate(raw)

    def _save_unlocked(self, state: _RecordState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )

    def _update_entity(self, entity_id: RecordId, **changes: object) -> None:
        with self._lock:
            state = self._load_unlocked()
            for entity in state.entities:
                if _same_id(entity.get("id"), entity_id):
                    entity.update(changes)
                    self._save_unlocked(state)
                    return
            raise LookupError(f"Entity {entity_id} not found")

    # Entities

    def add_entity(self, entity: Mapping[str, Any]) -> dict[str, Any]:
        if entity.get("id") is None:
            raise ValueError("entity must have an id")
        with self._lock:
            state = self._load_unlocked()
            if any(_same_id(e.get("id"), entity["id"]) for e in state.entities):
                raise ValueError(f"Entity {entity['id']} already exists")
            record = dict(entity)
            state.entities.append(record)
            self._save_unlocked(state)
            return record

    def get_entity(self, entity_id: RecordId) -> dict[str, Any] | None:
        with self._lock:
            for entity in self._load_unlocked().entities:
                if _same_id(entity.get("id"), entity_id):
                    return entity
            return None

    def update_entity_status(self, entity_id: RecordId, status: str) -> None:
        self._update_entity(entity_id, status=status)

    def assign_owner(self, entity_id: RecordId, owner_id: RecordId) -> None:
        self._update_entity(entity_id, owner_id=owner_id)

    # Tasks

    def create_task(
        self,
        title: str,
        description: str | None = None,
        assignee_id: RecordId | None = None,
        related_entity_id: RecordId | None = None,
        due_date: str | None = None,
    ) -> RecordId:
        with self._lock:
            state = self._load_unlocked()
            task = TaskRecord(
                id=max((t.id for t in state.tasks), default=0) + 1,
                title=title,
                description=description,
                assignee_id=assignee_id,
                related_entity_id=related_entity_id,
                due_date=due_date,
            )
            state.tasks.append(task)
            self._save_unlocked(state)
            return task.id

    def list_tasks(self) -> list[TaskRecord]:
        with self._lock:
            return self._load_unlocked().tasks

    # Notes

    def add_note(self, entity_id: RecordId, author_id: RecordId, content: str, kind: str) -> None:
        with self._lock:
            state = self._load_unlocked()
            state.notes.append(
                NoteRecord(
                    id=max((n.id for n in state.notes), default=0) + 1,
                    entity_id=entity_id,
                    author_id=author_id,
                    content=content,
                    kind=kind,
                )
            )
            self._save_unlocked(state)

    def list_notes(self, entity_id: RecordId | None = None) -> list[NoteRecord]:
        with self._lock:
            notes = self._load_unlocked().notes
        if entity_id is None:
            return notes
        return [n for n in notes if _same_id(n.entity_id, entity_id)]


class LogNotificationTransport:
    """Writes every notification to the log and reports it as delivered."""

    def send(
        self, kind: str, recipient: str, template_data: Mapping[str, Any]
    ) -> NotificationResult:
        logger.info(
            "Notification sent",
            extra={
                "notification_kind": kind,
                "recipient": recipient,
                "template_data": dict(template_data),
            },
        )
        return NotificationResult(success=True)
