"""Unit tests for the execution context snapshot and trigger events."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from hr_workflow_engine.engine.workflow.context import ExecutionContext
from hr_workflow_engine.engine.workflow.events import TriggerEvent
from hr_workflow_engine.engine.workflow.models import TriggerKind


def test_context_rejects_values_that_cannot_be_persisted() -> None:
    with pytest.raises(ValueError, match="JSON-serializable"):
        ExecutionContext({"entity_id": 1, "seen_at": datetime(2025, 1, 1, tzinfo=UTC)})


def test_context_is_a_snapshot() -> None:
    entity = {"id": 1, "status": "Applied"}
    context = ExecutionContext({"entity_id": 1, "entity": entity})

    entity["status"] = "Hired"

    assert context.entity is not None
    assert context.entity["status"] == "Applied"
    with pytest.raises(TypeError):
        context.values["entity_id"] = 2  # type: ignore[index]


def test_nested_values_cannot_be_changed_in_place() -> None:
    context = ExecutionContext({"entity": {"status": "Applied", "tags": ["new"]}})

    context["entity"]["status"] = "Hired"  # type: ignore[index]
    context.entity["tags"].append("x")  # type: ignore[index, union-attr]
    with pytest.raises(TypeError):
        context.values["entity"]["status"] = "Hired"  # type: ignore[index]

    assert context.to_json() == {"entity": {"status": "Applied", "tags": ["new"]}}
    assert context.with_updates({"actor_id": 5})["entity"] == {
        "status": "Applied",
        "tags": ["new"],
    }


def test_with_updates_returns_new_context() -> None:
    context = ExecutionContext({"entity_id": 1, "actor_id": 5})

    updated = context.with_updates({"actor_id": 6})

    assert context.actor_id == 5
    assert updated.actor_id == 6
    assert context.with_updates(None) is context
    assert updated == {"entity_id": 1, "actor_id": 6}


def test_typed_accessors_ignore_unexpected_shapes() -> None:
    context = ExecutionContext({"entity_id": [1], "entity": "not a mapping", "actor_id": "u-7"})

    assert context.entity_id is None
    assert context.entity is None
    assert context.actor_id == "u-7"


def test_json_roundtrip_preserves_values() -> None:
    context = ExecutionContext({"entity_id": "cand-1", "entity": {"tags": ["a", "b"]}})

    assert ExecutionContext.from_json(context.to_json()) == context
    assert ExecutionContext.from_json(None) == {}


def test_event_payload_reads_aliases_and_keeps_unknown_keys() -> None:
    event = TriggerEvent.from_payload(
        "StageChanged",
        {"entityId": 42, "oldStage": "Applied", "newStage": "Interview", "source": "ats"},
    )

    assert event.kind is TriggerKind.STAGE_CHANGED
    assert event.entity_id == 42
    assert event.from_stage == "Applied"
    assert event.to_stage == "Interview"
    assert event.extra == {"source": "ats"}
    assert event.payload() == {
        "entity_id": 42,
        "from_stage": "Applied",
        "to_stage": "Interview",
        "source": "ats",
    }
