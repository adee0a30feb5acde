from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hr_workflow_engine.engine.collaborators import NotificationTransport

from .actions import ActionHandlerRegistry, StepResult, UnknownActionError, format_validation_error
from .context import ExecutionContext
from .expressions import evaluate_expression
from .models import DelayUnit, RecordId, StepKind, WorkflowStep

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

IN_APP_NOTIFICATION = "in_app"

# In-app notifications without a user go to the shared feed.
BROADCAST_RECIPIENT = "broadcast"

_DELAY_DELTAS: dict[DelayUnit, Callable[[int], timedelta]] = {
    DelayUnit.MINUTES: lambda n: timedelta(minutes=n),
    DelayUnit.HOURS: lambda n: timedelta(hours=n),
    DelayUnit.DAYS: lambda n: timedelta(days=n),
}


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class DelayConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    duration: int = Field(gt=0)
    unit: DelayUnit


class NotificationConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    user_id: RecordId | None = None


def resume_time(config: DelayConfig, now: datetime) -> datetime:
    return now + _DELAY_DELTAS[config.unit](config.duration)


class StepExecutor:
    """Runs exactly one step and reports the outcome.

    Dispatch is purely by step kind. Every branch reports problems as a failed
    StepResult; nothing raised by a handler or collaborator escapes `run_step`.
    Delay steps only compute their wake-up time here; suspending the execution
    is the coordinator's job.
    """

    def __init__(
        self,
        *,
        registry: ActionHandlerRegistry,
        notifier: NotificationTransport,
        clock: Clock = utc_now,
    ) -> None:
        self._registry = registry
        self._notifier = notifier
        self._clock = clock

    def run_step(self, step: WorkflowStep, context: ExecutionContext) -> StepResult:
        try:
            if step.kind is StepKind.ACTION:
                return self._run_action(step, context)
            if step.kind is StepKind.CONDITION:
                return self._run_condition(step, context)
            if step.kind is StepKind.DELAY:
                return self._run_delay(step)
            if step.kind is StepKind.NOTIFICATION:
                return self._run_notification(step, context)
            return StepResult.fail(f"Unknown step type: {step.kind}")
        except Exception as e:
            logger.exception(
                "Step raised", extra={"step_id": step.id, "step_kind": step.kind.value}
            )
            return StepResult.fail(str(e) or type(e).__name__)

    def _run_action(self, step: WorkflowStep, context: ExecutionContext) -> StepResult:
        action_type = step.config.get("action_type")
        if not action_type:
            return StepResult.fail("action_type configuration required for action steps")
        try:
            handler = self._registry.get(action_type)
        except UnknownActionError as e:
            return StepResult.fail(str(e))
        return handler.execute(step.config, context)

    def _run_condition(self, step: WorkflowStep, context: ExecutionContext) -> StepResult:
        expression = step.config.get("expression")
        if not expression:
            return StepResult.ok()
        if not isinstance(expression, str):
            return StepResult.fail("expression configuration must be a string")

        evaluation = evaluate_expression(expression, context)
        if not evaluation.ok:
            return StepResult.fail(f"Condition evaluation error: {evaluation.error}")
        return StepResult.ok(
            {"expression_result": evaluation.value}, should_continue=evaluation.value
        )

    def _run_delay(self, step: WorkflowStep) -> StepResult:
        try:
            cfg = DelayConfig.model_validate(step.config)
        except ValidationError as e:
            return StepResult.fail(format_validation_error("delay", e))

        scheduled = resume_time(cfg, self._clock())
        logger.info(
            "Delay step scheduled",
            extra={"step_id": step.id, "scheduled_resume_at": scheduled.isoformat()},
        )
        return StepResult.ok({"scheduled_resume_at": scheduled.isoformat()})

    def _run_notification(self, step: WorkflowStep, context: ExecutionContext) -> StepResult:
        try:
            cfg = NotificationConfig.model_validate(step.config)
        except ValidationError as e:
            return StepResult.fail(format_validation_error("notification", e))

        recipient = cfg.user_id if cfg.user_id is not None else context.actor_id
        if recipient is None:
            recipient = BROADCAST_RECIPIENT

        data: dict[str, Any] = {"title": cfg.title, "message": cfg.message}
        if context.entity_id is not None:
            data["entity_id"] = context.entity_id
        result = self._notifier.send(IN_APP_NOTIFICATION, str(recipient), data)
        if not result.success:
            return StepResult.fail(
                f"notification delivery failed: {result.error or 'unknown error'}"
            )
        return StepResult.ok({"notification_sent": True, "recipient": str(recipient)})
