"""Console script entrypoint.

The CLI is implemented in `hr_workflow_engine.engine.main`.
"""

from __future__ import annotations

from hr_workflow_engine.engine.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
