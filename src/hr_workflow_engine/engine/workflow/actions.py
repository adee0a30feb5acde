from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hr_workflow_engine.engine.collaborators import (
    EntityStore,
    NoteStore,
    NotificationTransport,
    TaskStore,
)

from .context import ExecutionContext
from .models import ActionKind, RecordId

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StepResult:
    """Outcome of running one step.

    `context_updates` lists keys a handler wants changed for later steps. They
    are recorded on the step execution; nothing mutates the running context.
    """

    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None
    should_continue: bool = True
    context_updates: dict[str, Any] | None = None

    @classmethod
    def ok(
        cls,
        data: dict[str, Any] | None = None,
        *,
        should_continue: bool = True,
        context_updates: dict[str, Any] | None = None,
    ) -> StepResult:
        return cls(
            success=True,
            data=data,
            should_continue=should_continue,
            context_updates=context_updates,
        )

    @classmethod
    def fail(cls, error: str, data: dict[str, Any] | None = None) -> StepResult:
        return cls(success=False, data=data, error=error, should_continue=False)


class ActionHandler(Protocol):
    """Performs the side effect of one action kind.

    Handlers validate their configuration before writing anything and report
    problems as a failed StepResult.
    """

    def execute(self, config: Mapping[str, Any], context: ExecutionContext) -> StepResult: ...


def format_validation_error(kind: str, error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ())) or "config"
        parts.append(f"{loc}: {item.get('msg', 'invalid')}")
    return f"invalid {kind} configuration: " + "; ".join(parts)


class _ActionConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)


class SendNotificationConfig(_ActionConfig):
    template: str = Field(default="status_change", min_length=1)
    recipient: Literal["entity_email", "explicit"] = "entity_email"
    to: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class UpdateEntityStatusConfig(_ActionConfig):
    status: str = Field(min_length=1)


class AssignOwnerConfig(_ActionConfig):
    owner_id: RecordId


class CreateTaskConfig(_ActionConfig):
    title: str = Field(min_length=1)
    description: str | None = None
    assignee_id: RecordId | None = None
    due_date: str | None = None


class AddNoteConfig(_ActionConfig):
    content: str = Field(min_length=1)
    kind: str = "general"


# Fields filled in when a template's own data does not provide them.
_TEMPLATE_DEFAULTS: dict[str, dict[str, Any]] = {
    "offer": {"salary": "competitive", "start_date": "TBD"},
}


@dataclass(frozen=True, slots=True)
class SendNotification:
    transport: NotificationTransport
    entities: EntityStore

    def execute(self, config: Mapping[str, Any], context: ExecutionContext) -> StepResult:
        kind = ActionKind.SEND_NOTIFICATION.value
        try:
            cfg = SendNotificationConfig.model_validate(dict(config))
        except ValidationError as e:
            return StepResult.fail(format_validation_error(kind, e))

        entity: Mapping[str, Any] | None = context.entity
        if entity is None and context.entity_id is not None:
            entity = self.entities.get_entity(context.entity_id)

        if cfg.recipient == "explicit":
            if not cfg.to:
                return StepResult.fail(
                    f"invalid {kind} configuration: to is required for explicit recipients"
                )
            recipient = cfg.to
        else:
            email = entity.get("email") if entity else None
            if not isinstance(email, str) or not email.strip():
                return StepResult.fail("entity has no email address to notify")
            recipient = email

        template_data: dict[str, Any] = dict(_TEMPLATE_DEFAULTS.get(cfg.template, {}))
        if entity:
            template_data["first_name"] = entity.get("first_name")
            template_data["stage"] = context.get("to_stage") or entity.get("status")
            if "position" in entity:
                template_data["position"] = entity.get("position")
        template_data.update(cfg.data)

        result = self.transport.send(cfg.template, recipient, template_data)
        if not result.success:
            logger.warning(
                "Notification transport reported a failure",
                extra={"template": cfg.template, "recipient": recipient, "error": result.error},
            )
            return StepResult.fail(
                f"notification delivery failed: {result.error or 'unknown error'}"
            )
        return StepResult.ok({"notification_sent": True, "recipient": recipient})


@dataclass(frozen=True, slots=True)
class UpdateEntityStatus:
    entities: EntityStore

    def execute(self, config: Mapping[str, Any], context: ExecutionContext) -> StepResult:
        kind = ActionKind.UPDATE_ENTITY_STATUS.value
        entity_id = context.entity_id
        if entity_id is None:
            return StepResult.fail(f"entity_id is required in the context for {kind}")
        try:
            cfg = UpdateEntityStatusConfig.model_validate(dict(config))
        except ValidationError as e:
            return StepResult.fail(format_validation_error(kind, e))

        self.entities.update_entity_status(entity_id, cfg.status)
        updates = None
        if context.entity is not None:
            updates = {"entity": {**context.entity, "status": cfg.status}}
        return StepResult.ok({"new_status": cfg.status}, context_updates=updates)


@dataclass(frozen=True, slots=True)
class AssignOwner:
    entities: EntityStore

    def execute(self, config: Mapping[str, Any], context: ExecutionContext) -> StepResult:
        kind = ActionKind.ASSIGN_OWNER.value
        entity_id = context.entity_id
        if entity_id is None:
            return StepResult.fail(f"entity_id is required in the context for {kind}")
        try:
            cfg = AssignOwnerConfig.model_validate(dict(config))
        except ValidationError as e:
            return StepResult.fail(format_validation_error(kind, e))

        self.entities.assign_owner(entity_id, cfg.owner_id)
        updates = None
        if context.entity is not None:
            updates = {"entity": {**context.entity, "owner_id": cfg.owner_id}}
        return StepResult.ok({"owner_id": cfg.owner_id}, context_updates=updates)


@dataclass(frozen=True, slots=True)
class CreateTask:
    tasks: TaskStore

    def execute(self, config: Mapping[str, Any], context: ExecutionContext) -> StepResult:
        try:
            cfg = CreateTaskConfig.model_validate(dict(config))
        except ValidationError as e:
            return StepResult.fail(format_validation_error(ActionKind.CREATE_TASK.value, e))

        assignee = cfg.assignee_id if cfg.assignee_id is not None else context.actor_id
        task_id = self.tasks.create_task(
            cfg.title,
            description=cfg.description,
            assignee_id=assignee,
            related_entity_id=context.entity_id,
            due_date=cfg.due_date,
        )
        return StepResult.ok({"task_id": task_id, "assignee_id": assignee})


@dataclass(frozen=True, slots=True)
class AddNote:
    notes: NoteStore
    system_actor_id: RecordId = 1

    def execute(self, config: Mapping[str, Any], context: ExecutionContext) -> StepResult:
        kind = ActionKind.ADD_NOTE.value
        entity_id = context.entity_id
        if entity_id is None:
            return StepResult.fail(f"entity_id is required in the context for {kind}")
        try:
            cfg = AddNoteConfig.model_validate(dict(config))
        except ValidationError as e:
            return StepResult.fail(format_validation_error(kind, e))

        author = context.actor_id if context.actor_id is not None else self.system_actor_id
        self.notes.add_note(entity_id, author, cfg.content, cfg.kind)
        return StepResult.ok({"note_added": True, "author_id": author})


class UnknownActionError(LookupError):
    pass


class ActionHandlerRegistry:
    """Action kind -> handler.

    Built explicitly and passed to the coordinator; there is no global instance.
    """

    def __init__(self, handlers: Mapping[ActionKind, ActionHandler] | None = None) -> None:
        self._handlers: dict[ActionKind, ActionHandler] = dict(handlers or {})

    def register(self, kind: ActionKind | str, handler: ActionHandler) -> None:
        self._handlers[ActionKind(kind)] = handler

    def get(self, kind: ActionKind | str) -> ActionHandler:
        try:
            return self._handlers[ActionKind(kind)]
        except (KeyError, ValueError) as e:
            raise UnknownActionError(f"Unknown action type: {kind}") from e

    def kinds(self) -> list[ActionKind]:
        return list(self._handlers)

    def __contains__(self, kind: object) -> bool:
        try:
            return ActionKind(kind) in self._handlers
        except ValueError:
            return False

    def __iter__(self) -> Iterator[ActionKind]:
        return iter(self._handlers)


def build_default_registry(
    *,
    entities: EntityStore,
    tasks: TaskStore,
    notes: NoteStore,
    transport: NotificationTransport,
    system_actor_id: RecordId = 1,
) -> ActionHandlerRegistry:
    return ActionHandlerRegistry(
        {
            ActionKind.SEND_NOTIFICATION: SendNotification(transport=transport, entities=entities),
            ActionKind.UPDATE_ENTITY_STATUS: UpdateEntityStatus(entities=entities),
            ActionKind.ASSIGN_OWNER: AssignOwner(entities=entities),
            ActionKind.CREATE_TASK: CreateTask(tasks=tasks),
            ActionKind.ADD_NOTE: AddNote(notes=notes, system_actor_id=system_actor_id),
        }
    )
