from __future__ import annotations

import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from .models import RecordId

ENTITY_ID = "entity_id"
ENTITY = "entity"
ACTOR_ID = "actor_id"
FROM_STAGE = "from_stage"
TO_STAGE = "to_stage"
ACTIVITY_ID = "activity_id"
TRIGGER = "trigger"


def _freeze(value: object) -> object:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: object) -> object:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple | list):
        return [_thaw(v) for v in value]
    return value


def _frozen_copy(values: Mapping[str, object]) -> Mapping[str, object]:
    try:
        encoded = json.dumps(_thaw(values), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Execution context must be JSON-serializable: {e}") from e
    return MappingProxyType({k: _freeze(v) for k, v in json.loads(encoded).items()})


@dataclass(frozen=True, slots=True, eq=False)
class ExecutionContext(Mapping[str, object]):
    """The data snapshot every step of an execution reads.

    Values are restricted to JSON types so the context can be persisted when an
    execution suspends and rebuilt verbatim by whichever process resumes it.
    The snapshot is frozen at every level and reads hand out fresh copies, so a
    step can only change what later steps see through `with_updates`.
    """

    values: Mapping[str, object]

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", _frozen_copy(self.values))

    def __getitem__(self, key: str) -> object:
        return _thaw(self.values[key])

    def __iter__(self) -> Iterator[str]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Mapping):
            return self.to_json() == _thaw(other)
        return NotImplemented

    @property
    def entity_id(self) -> RecordId | None:
        raw = self.values.get(ENTITY_ID)
        return raw if isinstance(raw, int | str) else None

    @property
    def entity(self) -> Mapping[str, object] | None:
        raw = self.values.get(ENTITY)
        return {k: _thaw(v) for k, v in raw.items()} if isinstance(raw, Mapping) else None

    @property
    def actor_id(self) -> RecordId | None:
        raw = self.values.get(ACTOR_ID)
        return raw if isinstance(raw, int | str) else None

    def with_updates(self, updates: Mapping[str, object] | None) -> ExecutionContext:
        if not updates:
            return self
        merged = self.to_json()
        merged.update(updates)
        return ExecutionContext(merged)

    def to_json(self) -> dict[str, object]:
        return {k: _thaw(v) for k, v in self.values.items()}

    @staticmethod
    def from_json(obj: Mapping[str, object] | None) -> ExecutionContext:
        return ExecutionContext(dict(obj or {}))
