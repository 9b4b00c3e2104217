"""FastAPI server adapter for stepflow.

Exposes stored runs and workflow graphs to dashboards and other observers.

Design intent:
- Keep workflow logic in `stepflow.workflow` and `stepflow.state`
- Keep server-specific concerns (routing, CORS, HTTP errors) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from stepflow.server.app import create_app
