"""Unit tests for engine settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from hr_workflow_engine.engine.config import EngineSettings

_ENV_VARS = (
    "LOG_LEVEL",
    "WORKFLOW_STATE_PATH",
    "WORKFLOW_POLL_INTERVAL_SECONDS",
    "WORKFLOW_HALT_ON_FALSE_CONDITION",
    "WORKFLOW_SYSTEM_ACTOR_ID",
)


@pytest.fixture(autouse=True)
def _clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_settings_defaults() -> None:
    settings = EngineSettings()

    assert settings.log_level == "INFO"
    assert settings.state_path == Path("workflow_state")
    assert settings.poll_interval_seconds == 60.0
    assert settings.halt_on_false_condition is True
    assert settings.system_actor_id == 1
    assert settings.definitions_file == Path("workflow_state") / "definitions.json"
    assert settings.executions_file == Path("workflow_state") / "executions.json"
    assert settings.records_file == Path("workflow_state") / "records.json"


def test_settings_loads_from_dotenv(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text(
        "\n".join(
            [
                "LOG_LEVEL=DEBUG",
                "WORKFLOW_STATE_PATH=/var/lib/workflows",
                "WORKFLOW_POLL_INTERVAL_SECONDS=15",
                "WORKFLOW_HALT_ON_FALSE_CONDITION=false",
                "WORKFLOW_SYSTEM_ACTOR_ID=99",
                "UNRELATED_SETTING=ignored",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = EngineSettings()

    assert settings.log_level == "DEBUG"
    assert settings.state_path == Path("/var/lib/workflows")
    assert settings.poll_interval_seconds == 15.0
    assert settings.halt_on_false_condition is False
    assert settings.system_actor_id == 99


def test_environment_overrides_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / ".env").write_text("LOG_LEVEL=DEBUG\n", encoding="utf-8")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")

    assert EngineSettings().log_level == "WARNING"


def test_poll_interval_must_be_positive(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKFLOW_POLL_INTERVAL_SECONDS", "0")

    with pytest.raises(ValidationError):
        EngineSettings()
