from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from hr_workflow_engine.engine.collaborators import DefinitionStore, EntityStore

from . import context as ctx
from .context import ExecutionContext
from .coordinator import ExecutionCoordinator
from .events import TriggerEvent
from .models import RecordId, TriggerKind, WorkflowExecution

logger = logging.getLogger(__name__)


class TriggerDispatcher:
    """Starts every active workflow whose trigger matches a domain event.

    Each matching definition gets its own execution. A definition that fails to
    start is logged and skipped so its siblings still run.
    """

    def __init__(
        self,
        *,
        definitions: DefinitionStore,
        coordinator: ExecutionCoordinator,
        entities: EntityStore,
    ) -> None:
        self._definitions = definitions
        self._coordinator = coordinator
        self._entities = entities

    def on_event(
        self, event_kind: TriggerKind | str, payload: Mapping[str, Any]
    ) -> list[WorkflowExecution]:
        event = TriggerEvent.from_payload(event_kind, payload)
        return self.dispatch(event)

    def dispatch(self, event: TriggerEvent) -> list[WorkflowExecution]:
        log_fields = {"event_kind": event.kind.value, "entity_id": event.entity_id}
        if event.entity_id is None:
            logger.error("Event carries no entity id; ignoring", extra=log_fields)
            return []

        definitions = self._definitions.list_active_definitions(event.kind)
        logger.info(
            "Matching workflows for event",
            extra={**log_fields, "candidates": len(definitions)},
        )

        matching = [d for d in definitions if event.matches(d.trigger_conditions)]
        if not matching:
            return []

        entity = event.entity
        if entity is None:
            try:
                entity = self._entities.get_entity(event.entity_id)
            except Exception:
                logger.exception("Entity lookup failed; no workflows started", extra=log_fields)
                return []
        if not isinstance(entity, Mapping):
            logger.error("Entity not found; no workflows started", extra=log_fields)
            return []

        context = build_context(event, entity)
        started: list[WorkflowExecution] = []
        for definition in matching:
            try:
                started.append(self._coordinator.start(definition.id, context))
            except Exception:
                logger.exception(
                    "Workflow failed to start",
                    extra={**log_fields, "workflow_id": definition.id},
                )
        return started

    def on_entity_created(
        self, entity_id: RecordId, actor_id: RecordId | None = None
    ) -> list[WorkflowExecution]:
        return self.dispatch(
            TriggerEvent(kind=TriggerKind.ENTITY_CREATED, entity_id=entity_id, actor_id=actor_id)
        )

    def on_stage_changed(
        self,
        entity_id: RecordId,
        from_stage: str,
        to_stage: str,
        actor_id: RecordId | None = None,
    ) -> list[WorkflowExecution]:
        return self.dispatch(
            TriggerEvent(
                kind=TriggerKind.STAGE_CHANGED,
                entity_id=entity_id,
                actor_id=actor_id,
                from_stage=from_stage,
                to_stage=to_stage,
            )
        )

    def on_activity_completed(
        self, activity_id: RecordId, entity_id: RecordId, actor_id: RecordId | None = None
    ) -> list[WorkflowExecution]:
        return self.dispatch(
            TriggerEvent(
                kind=TriggerKind.ACTIVITY_COMPLETED,
                entity_id=entity_id,
                actor_id=actor_id,
                activity_id=activity_id,
            )
        )


def _snapshot(entity: Mapping[str, Any]) -> dict[str, Any]:
    # Dates and decimals from the entity store are kept as their string form.
    return json.loads(json.dumps(dict(entity), default=str))


def build_context(event: TriggerEvent, entity: Mapping[str, Any]) -> ExecutionContext:
    values: dict[str, Any] = {
        ctx.TRIGGER: event.kind.value,
        ctx.ENTITY_ID: event.entity_id,
        ctx.ENTITY: _snapshot(entity),
    }
    for key, value in (
        (ctx.ACTOR_ID, event.actor_id),
        (ctx.FROM_STAGE, event.from_stage),
        (ctx.TO_STAGE, event.to_stage),
        (ctx.ACTIVITY_ID, event.activity_id),
    ):
        if value is not None:
            values[key] = value
    return ExecutionContext(values)
