"""Explicit workflow state machines.

This package introduces first-class types for:
- Workflow definitions (steps, handler bindings, transitions)
- Step handlers and the registry resolving them by name
- Run state and its append-only step history
- The engine that walks a definition one step at a time

The intent is to make long-horizon execution restartable, inspectable, and
deterministic in its control flow.
"""

__all__: list[str] = []
