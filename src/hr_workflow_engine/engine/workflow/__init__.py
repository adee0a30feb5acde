"""Workflow runtime: definitions, step execution, suspension and triggers."""
