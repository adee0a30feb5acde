from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from . import context as ctx
from .models import RecordId, TriggerKind

_KNOWN_KEYS = {
    ctx.ENTITY_ID,
    ctx.ENTITY,
    ctx.ACTOR_ID,
    ctx.FROM_STAGE,
    ctx.TO_STAGE,
    ctx.ACTIVITY_ID,
}

# Event sources written against the platform API send camelCase keys.
_ALIASES = {
    "entityId": ctx.ENTITY_ID,
    "actorId": ctx.ACTOR_ID,
    "triggeredBy": ctx.ACTOR_ID,
    "fromStage": ctx.FROM_STAGE,
    "oldStage": ctx.FROM_STAGE,
    "toStage": ctx.TO_STAGE,
    "newStage": ctx.TO_STAGE,
    "activityId": ctx.ACTIVITY_ID,
}


@dataclass(frozen=True, slots=True)
class TriggerEvent:
    """A domain event raised by the surrounding platform.

    Event sources (HTTP handlers, other services) only report facts; they never
    run workflows themselves. `extra` keeps any payload keys the engine does not
    know about so trigger conditions can still match on them.
    """

    kind: TriggerKind
    entity_id: RecordId | None
    actor_id: RecordId | None = None
    from_stage: str | None = None
    to_stage: str | None = None
    activity_id: RecordId | None = None
    entity: Mapping[str, Any] | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_payload(kind: TriggerKind | str, payload: Mapping[str, Any]) -> TriggerEvent:
        payload = {_ALIASES.get(k, k): v for k, v in payload.items()}
        raw_entity = payload.get(ctx.ENTITY)
        return TriggerEvent(
            kind=TriggerKind(kind),
            entity_id=payload.get(ctx.ENTITY_ID),
            actor_id=payload.get(ctx.ACTOR_ID),
            from_stage=payload.get(ctx.FROM_STAGE),
            to_stage=payload.get(ctx.TO_STAGE),
            activity_id=payload.get(ctx.ACTIVITY_ID),
            entity=raw_entity if isinstance(raw_entity, Mapping) else None,
            extra={k: v for k, v in payload.items() if k not in _KNOWN_KEYS},
        )

    def payload(self) -> dict[str, Any]:
        """Flat view used to match trigger conditions."""

        out: dict[str, Any] = dict(self.extra)
        out[ctx.ENTITY_ID] = self.entity_id
        for key, value in (
            (ctx.ACTOR_ID, self.actor_id),
            (ctx.FROM_STAGE, self.from_stage),
            (ctx.TO_STAGE, self.to_stage),
            (ctx.ACTIVITY_ID, self.activity_id),
        ):
            if value is not None:
                out[key] = value
        return out

    def matches(self, conditions: Mapping[str, Any] | None) -> bool:
        """True when every condition key equals the event's value for that key.

        Condition keys may use the same camelCase spellings as event payloads.
        Entries whose value is null or empty place no constraint.
        """

        if not conditions:
            return True
        payload = self.payload()
        return all(
            payload.get(_ALIASES.get(key, key)) == expected
            for key, expected in conditions.items()
            if expected not in (None, "")
        )
