"""HR workflow execution engine.

Runs multi-step workflows (actions, conditions, delays, notifications) in
response to domain events about entities such as candidates and employees:
- configuration loaded from `.env`
- structured logging
- local JSON persistence of definitions and executions
"""

__version__ = "0.1.0"

from hr_workflow_engine.engine.config import EngineSettings

__all__ = ["__version__", "EngineSettings"]
