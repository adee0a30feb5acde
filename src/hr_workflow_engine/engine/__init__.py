"""Engine components.

- Settings loaded from .env
- Structured logging
- Collaborator contracts and a local JSON record store
- The workflow runtime under `engine.workflow`
"""
