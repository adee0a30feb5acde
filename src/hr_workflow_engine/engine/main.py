"""CLI entrypoint for the workflow engine.

Every command works against the JSON state under `WORKFLOW_STATE_PATH`, so an
event emitted from one invocation can be resumed by a poller started from
another.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from hr_workflow_engine import __version__
from hr_workflow_engine.engine.config import EngineSettings
from hr_workflow_engine.engine.logging import configure_logging
from hr_workflow_engine.engine.records import JsonRecordStore, LogNotificationTransport
from hr_workflow_engine.engine.workflow import context as ctx
from hr_workflow_engine.engine.workflow.actions import build_default_registry
from hr_workflow_engine.engine.workflow.context import ExecutionContext
from hr_workflow_engine.engine.workflow.coordinator import (
    ExecutionCoordinator,
    WorkflowNotFoundError,
)
from hr_workflow_engine.engine.workflow.dispatcher import TriggerDispatcher
from hr_workflow_engine.engine.workflow.models import RecordId, TriggerKind, WorkflowDefinition
from hr_workflow_engine.engine.workflow.poller import DelayResumptionPoller
from hr_workflow_engine.engine.workflow.state_machine import ExecutionStatus
from hr_workflow_engine.engine.workflow.store import JsonDefinitionStore, JsonExecutionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Engine:
    """Everything one process needs, wired against a single state directory."""

    definitions: JsonDefinitionStore
    executions: JsonExecutionStore
    records: JsonRecordStore
    coordinator: ExecutionCoordinator
    dispatcher: TriggerDispatcher
    poller: DelayResumptionPoller


def build_engine(settings: EngineSettings) -> Engine:
    definitions = JsonDefinitionStore(settings.definitions_file)
    executions = JsonExecutionStore(settings.executions_file)
    records = JsonRecordStore(settings.records_file)
    transport = LogNotificationTransport()

    registry = build_default_registry(
        entities=records,
        tasks=records,
        notes=records,
        transport=transport,
        system_actor_id=settings.system_actor_id,
    )
    coordinator = ExecutionCoordinator(
        definitions=definitions,
        executions=executions,
        registry=registry,
        notifier=transport,
        halt_on_false_condition=settings.halt_on_false_condition,
    )
    dispatcher = TriggerDispatcher(
        definitions=definitions, coordinator=coordinator, entities=records
    )
    poller = DelayResumptionPoller(coordinator=coordinator, executions=executions)
    return Engine(
        definitions=definitions,
        executions=executions,
        records=records,
        coordinator=coordinator,
        dispatcher=dispatcher,
        poller=poller,
    )


def _parse_record_id(value: str) -> RecordId:
    value = value.strip()
    return int(value) if value.isdigit() else value


def _load_json_argument(value: str) -> Any:
    """Accept inline JSON or `@path/to/file.json`."""

    if value.startswith("@"):
        return json.loads(Path(value[1:]).read_text(encoding="utf-8"))
    return json.loads(value)


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workflow-engine",
        description="Event-driven HR workflow execution engine",
    )
    parser.add_argument("--version", action="version", version=f"hr-workflow-engine {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    emit = subparsers.add_parser(
        "emit-event", help="Raise a domain event and start every matching workflow"
    )
    emit.add_argument(
        "--kind",
        required=True,
        help="Event kind: entity_created | stage_changed | activity_completed",
    )
    emit.add_argument(
        "--payload",
        default="{}",
        help="Event payload as JSON (or @file.json); flags below override its keys",
    )
    emit.add_argument("--entity-id", default=None, help="Entity the event is about")
    emit.add_argument("--actor-id", default=None, help="User who caused the event")
    emit.add_argument("--from-stage", default=None, help="Previous stage (stage_changed)")
    emit.add_argument("--to-stage", default=None, help="New stage (stage_changed)")
    emit.add_argument("--activity-id", default=None, help="Completed activity (activity_completed)")

    start = subparsers.add_parser("start", help="Start one workflow for an entity directly")
    start.add_argument("--workflow-id", type=int, required=True, help="Workflow definition id")
    start.add_argument("--entity-id", required=True, help="Entity to run the workflow for")
    start.add_argument("--actor-id", default=None, help="User starting the workflow")

    resume = subparsers.add_parser(
        "resume", help="Resume a suspended execution whose delay has elapsed"
    )
    resume.add_argument("--execution-id", type=int, required=True, help="Execution id")

    subparsers.add_parser("tick", help="Resume every execution with a due delay step, once")

    run_poller = subparsers.add_parser(
        "run-poller",
        help=(
            "Resume due delay steps until interrupted. Run one poller per state "
            "directory and do not run `tick` against it concurrently."
        ),
    )
    run_poller.add_argument(
        "--interval-seconds",
        type=float,
        default=None,
        help="Polling interval (defaults to WORKFLOW_POLL_INTERVAL_SECONDS)",
    )

    show = subparsers.add_parser("show-execution", help="Print an execution and its step history")
    show.add_argument("--execution-id", type=int, required=True, help="Execution id")

    list_executions = subparsers.add_parser("list-executions", help="List executions")
    list_executions.add_argument("--workflow-id", type=int, default=None, help="Filter by workflow")
    list_executions.add_argument(
        "--status",
        default=None,
        choices=[s.value for s in ExecutionStatus],
        help="Filter by status",
    )

    import_definitions = subparsers.add_parser(
        "import-definitions", help="Add workflow definitions from a JSON file"
    )
    import_definitions.add_argument(
        "--file", required=True, help="JSON file holding one definition or a list of them"
    )

    add_entity = subparsers.add_parser(
        "add-entity", help="Add an entity to the local record store"
    )
    add_entity.add_argument("--json", required=True, help="Entity as JSON (or @file.json)")

    return parser


def _event_payload(args: argparse.Namespace) -> dict[str, Any]:
    raw = _load_json_argument(args.payload)
    if not isinstance(raw, dict):
        raise ValueError("--payload must be a JSON object")
    payload = dict(raw)
    for key, value in (
        (ctx.ENTITY_ID, args.entity_id),
        (ctx.ACTOR_ID, args.actor_id),
        (ctx.ACTIVITY_ID, args.activity_id),
    ):
        if value is not None:
            payload[key] = _parse_record_id(value)
    if args.from_stage is not None:
        payload[ctx.FROM_STAGE] = args.from_stage
    if args.to_stage is not None:
        payload[ctx.TO_STAGE] = args.to_stage
    return payload


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = EngineSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)
    engine = build_engine(settings)

    try:
        if args.command == "emit-event":
            started = engine.dispatcher.on_event(TriggerKind(args.kind), _event_payload(args))
            print(f"Started {len(started)} workflow execution(s)")
            for execution in started:
                print(
                    f"  #{execution.id} workflow={execution.workflow_id} {execution.status.value}"
                )
            return 0

        if args.command == "start":
            entity_id = _parse_record_id(args.entity_id)
            entity = engine.records.get_entity(entity_id)
            if entity is None:
                print(f"Entity {entity_id} not found", file=sys.stderr)
                return 1
            values: dict[str, Any] = {ctx.ENTITY_ID: entity_id, ctx.ENTITY: entity}
            if args.actor_id is not None:
                values[ctx.ACTOR_ID] = _parse_record_id(args.actor_id)
            execution = engine.coordinator.start(args.workflow_id, ExecutionContext(values))
            print(f"Execution #{execution.id}: {execution.status.value}")
            if execution.error:
                print(execution.error)
            return 0

        if args.command == "resume":
            resumed = engine.coordinator.resume(args.execution_id)
            if resumed is None:
                print(f"Execution {args.execution_id} not found", file=sys.stderr)
                return 1
            print(f"Execution #{resumed.id}: {resumed.status.value}")
            return 0

        if args.command == "tick":
            count = engine.poller.tick()
            print(f"Resumed {count} execution(s)")
            return 0

        if args.command == "run-poller":
            interval = args.interval_seconds or settings.poll_interval_seconds
            try:
                engine.poller.run_forever(interval)
            except KeyboardInterrupt:
                logger.info("Delay poller interrupted")
            return 0

        if args.command == "show-execution":
            execution = engine.executions.get_execution(args.execution_id)
            if execution is None:
                print(f"Execution {args.execution_id} not found", file=sys.stderr)
                return 1
            steps = engine.executions.list_step_executions(execution.id)
            _print_json(
                {
                    **execution.model_dump(mode="json"),
                    "steps": [s.model_dump(mode="json") for s in steps],
                }
            )
            return 0

        if args.command == "list-executions":
            status = ExecutionStatus(args.status) if args.status else None
            executions = engine.executions.list_executions(
                workflow_id=args.workflow_id, status=status
            )
            if not executions:
                print("No executions.")
                return 0
            for execution in executions:
                line = f"#{execution.id} workflow={execution.workflow_id} {execution.status.value}"
                if execution.error:
                    line += f" ({execution.error})"
                print(line)
            return 0

        if args.command == "import-definitions":
            raw = _load_json_argument("@" + args.file)
            items = raw if isinstance(raw, list) else [raw]
            for item in items:
                definition = engine.definitions.save_definition(
                    WorkflowDefinition.model_validate(item)
                )
                logger.info(
                    "Workflow definition imported",
                    extra={"workflow_id": definition.id, "step_count": len(definition.steps)},
                )
            print(f"Imported {len(items)} workflow definition(s)")
            return 0

        if args.command == "add-entity":
            entity = _load_json_argument(args.json)
            if not isinstance(entity, dict):
                raise ValueError("--json must be a JSON object")
            record = engine.records.add_entity(entity)
            print(f"Added entity {record['id']}")
            return 0

        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 2

    except WorkflowNotFoundError as e:
        print(str(e), file=sys.stderr)
        return 2
    except Exception as e:
        logger.exception("Command failed", extra={"command": args.command})
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
