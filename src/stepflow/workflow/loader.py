"""Load workflow definitions from JSON or TOML files.

TOML layout::

    name = "review"
    initial_step = "review"

    [[steps]]
    name = "review"
    transitions = { success = "__done__", needs_human = "fix" }
"""

from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from stepflow.workflow.builtin import get_definition
from stepflow.workflow.definition import WorkflowDefinition
from stepflow.workflow.errors import DefinitionError


def parse_definition(data: dict[str, Any]) -> WorkflowDefinition:
    # Accept both a bare definition and one nested under a "workflow" key.
    if "workflow" in data and isinstance(data["workflow"], dict):
        data = data["workflow"]
    try:
        return WorkflowDefinition.model_validate(data)
    except ValidationError as e:
        raise DefinitionError(f"invalid workflow definition: {e}") from e


def load_definition(path: Path) -> WorkflowDefinition:
    """Read a definition from ``path``; the format follows the file suffix."""

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise DefinitionError(f"cannot read workflow definition {path}: {e}") from e

    suffix = path.suffix.lower()
    try:
        if suffix == ".toml":
            data = tomllib.loads(text)
        elif suffix == ".json":
            data = json.loads(text)
        else:
            raise DefinitionError(f"unsupported workflow definition format: {path.name}")
    except (tomllib.TOMLDecodeError, json.JSONDecodeError) as e:
        raise DefinitionError(f"cannot parse workflow definition {path}: {e}") from e

    if not isinstance(data, dict):
        raise DefinitionError(f"workflow definition {path} must be an object")
    return parse_definition(data)


def resolve_definition(name: str, path: Path | None = None) -> WorkflowDefinition:
    """A definition from ``path`` when given, otherwise the built-in called ``name``."""

    if path is not None:
        definition = load_definition(path)
        if name and definition.name != name:
            raise DefinitionError(
                f"definition file {path} describes workflow {definition.name!r}, not {name!r}"
            )
        return definition
    definition = get_definition(name)
    if definition is None:
        raise DefinitionError(f"unknown workflow {name!r}")
    return definition
