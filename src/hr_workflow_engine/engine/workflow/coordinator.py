from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime

from hr_workflow_engine.engine.collaborators import (
    DefinitionStore,
    ExecutionStore,
    NotificationTransport,
)

from .actions import ActionHandlerRegistry
from .context import ExecutionContext
from .models import StepKind, WorkflowExecution, WorkflowStep, WorkflowStepExecution
from .state_machine import ExecutionStatus, StepStatus
from .steps import Clock, StepExecutor, utc_now

logger = logging.getLogger(__name__)


class WorkflowNotFoundError(LookupError):
    pass


def rebuild_context(
    execution: WorkflowExecution, step_executions: Sequence[WorkflowStepExecution]
) -> ExecutionContext:
    """Reconstruct an execution's context purely from persisted records.

    The start snapshot is replayed with the context updates recorded by each
    completed step, in the order the steps ran.
    """

    context = ExecutionContext.from_json(execution.context)
    for record in step_executions:
        if record.status is StepStatus.COMPLETED and record.context_updates:
            context = context.with_updates(record.context_updates)
    return context


class ExecutionCoordinator:
    """Owns an execution's lifecycle.

    Steps run strictly one after another. The loop stops at the first failing
    step (the execution fails, nothing is rolled back), at a delay step (the
    execution stays running until the poller calls `resume`), or, when
    `halt_on_false_condition` is set, at a condition that does not hold (the
    execution completes early).
    """

    def __init__(
        self,
        *,
        definitions: DefinitionStore,
        executions: ExecutionStore,
        registry: ActionHandlerRegistry,
        notifier: NotificationTransport,
        clock: Clock = utc_now,
        halt_on_false_condition: bool = True,
    ) -> None:
        self._definitions = definitions
        self._executions = executions
        self._clock = clock
        self._halt_on_false_condition = halt_on_false_condition
        self._executor = StepExecutor(registry=registry, notifier=notifier, clock=clock)

    def start(self, definition_id: int, context: ExecutionContext) -> WorkflowExecution:
        definition = self._definitions.get_definition(definition_id)
        if definition is None:
            raise WorkflowNotFoundError(f"Workflow {definition_id} not found")

        execution = self._executions.create_execution(
            workflow_id=definition_id, context=context.to_json(), started_at=self._clock()
        )
        steps = self._definitions.get_steps(definition_id)
        logger.info(
            "Workflow execution started",
            extra={
                "execution_id": execution.id,
                "workflow_id": definition_id,
                "step_count": len(steps),
            },
        )
        return self._run_steps(execution, steps, context)

    def resume(self, execution_id: int) -> WorkflowExecution | None:
        execution = self._executions.get_execution(execution_id)
        if execution is None:
            logger.warning("Cannot resume unknown execution", extra={"execution_id": execution_id})
            return None
        if execution.status is not ExecutionStatus.RUNNING:
            logger.info(
                "Execution is no longer running; nothing to resume",
                extra={"execution_id": execution_id, "status": execution.status.value},
            )
            return execution

        records = self._executions.list_step_executions(execution_id)
        if any(r.status is StepStatus.RUNNING for r in records):
            logger.warning(
                "Execution has a step still running; not resuming",
                extra={"execution_id": execution_id},
            )
            return execution

        pending = [r for r in records if r.status is StepStatus.PENDING]
        if pending:
            claimed = self._executions.claim_due_step(pending[-1].id, now=self._clock())
            if claimed is None:
                logger.info(
                    "Delay step is not due or was already resumed",
                    extra={"execution_id": execution_id, "step_execution_id": pending[-1].id},
                )
                return execution
            records = self._executions.list_step_executions(execution_id)

        steps = self._definitions.get_steps(execution.workflow_id)
        completed_step_ids = {r.step_id for r in records if r.status is StepStatus.COMPLETED}
        completed_orders = [s.order for s in steps if s.id in completed_step_ids]
        last_order = max(completed_orders) if completed_orders else None
        remaining = [s for s in steps if last_order is None or s.order > last_order]

        logger.info(
            "Resuming workflow execution",
            extra={"execution_id": execution_id, "remaining_steps": len(remaining)},
        )
        return self._run_steps(execution, remaining, rebuild_context(execution, records))

    def _run_steps(
        self,
        execution: WorkflowExecution,
        steps: Sequence[WorkflowStep],
        context: ExecutionContext,
    ) -> WorkflowExecution:
        for step in steps:
            record = self._executions.create_step_execution(
                execution_id=execution.id, step_id=step.id, started_at=self._clock()
            )
            result = self._executor.run_step(step, context)

            if not result.success:
                error = result.error or "unknown error"
                self._executions.update_step_execution(
                    record.id,
                    status=StepStatus.FAILED,
                    result=result.data,
                    error=error,
                    completed_at=self._clock(),
                )
                logger.warning(
                    "Workflow step failed",
                    extra={"execution_id": execution.id, "step_id": step.id, "error": error},
                )
                return self._executions.finish_execution(
                    execution.id,
                    status=ExecutionStatus.FAILED,
                    completed_at=self._clock(),
                    error=f"Step {step.title} failed: {error}",
                )

            if step.kind is StepKind.DELAY:
                scheduled = datetime.fromisoformat((result.data or {})["scheduled_resume_at"])
                self._executions.update_step_execution(
                    record.id,
                    status=StepStatus.PENDING,
                    result=result.data,
                    scheduled_resume_at=scheduled,
                )
                logger.info(
                    "Workflow execution suspended on delay",
                    extra={
                        "execution_id": execution.id,
                        "step_id": step.id,
                        "scheduled_resume_at": scheduled.isoformat(),
                    },
                )
                return execution

            self._executions.update_step_execution(
                record.id,
                status=StepStatus.COMPLETED,
                result=result.data,
                context_updates=result.context_updates,
                completed_at=self._clock(),
            )
            context = context.with_updates(result.context_updates)

            if (
                step.kind is StepKind.CONDITION
                and not result.should_continue
                and self._halt_on_false_condition
            ):
                logger.info(
                    "Condition not met; completing execution early",
                    extra={"execution_id": execution.id, "step_id": step.id},
                )
                return self._complete(execution)

        return self._complete(execution)

    def _complete(self, execution: WorkflowExecution) -> WorkflowExecution:
        completed = self._executions.finish_execution(
            execution.id, status=ExecutionStatus.COMPLETED, completed_at=self._clock()
        )
        logger.info("Workflow execution completed", extra={"execution_id": execution.id})
        return completed
