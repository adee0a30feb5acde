"""Configuration for the workflow engine.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

All engine state (definitions, executions, local records) lives below a single
state directory so a poller started from another process sees the same
executions as the process that suspended them.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Settings for the workflow engine.

    Environment variables:
    - LOG_LEVEL                          (optional)
    - WORKFLOW_STATE_PATH                (optional)
    - WORKFLOW_POLL_INTERVAL_SECONDS     (optional)
    - WORKFLOW_HALT_ON_FALSE_CONDITION   (optional)
    - WORKFLOW_SYSTEM_ACTOR_ID           (optional)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `EngineSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    state_path: Path = Field(
        default=Path("workflow_state"),
        validation_alias="WORKFLOW_STATE_PATH",
        description="Directory where definitions, executions and local records are persisted",
    )

    poll_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        validation_alias="WORKFLOW_POLL_INTERVAL_SECONDS",
        description="How often the delay poller looks for due steps.",
    )

    halt_on_false_condition: bool = Field(
        default=True,
        validation_alias="WORKFLOW_HALT_ON_FALSE_CONDITION",
        description=(
            "If true, a condition step that evaluates to false completes the execution "
            "without running the remaining steps. If false, the result is only recorded "
            "and the sequence continues."
        ),
    )

    system_actor_id: int = Field(
        default=1,
        validation_alias="WORKFLOW_SYSTEM_ACTOR_ID",
        description="User id that authors notes when an event carries no actor.",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @property
    def definitions_file(self) -> Path:
        """Path where workflow definitions are persisted."""

        return self.state_path / "definitions.json"

    @property
    def executions_file(self) -> Path:
        """Path where executions and step executions are persisted."""

        return self.state_path / "executions.json"

    @property
    def records_file(self) -> Path:
        """Path of the local entity/task/note record store."""

        return self.state_path / "records.json"
