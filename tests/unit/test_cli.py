"""Unit tests for the stepflow command line."""

from __future__ import annotations

import json
import textwrap
from pathlib import Path

import pytest

from stepflow.runner.main import (
    EXIT_CANCELLED,
    EXIT_CONFIG,
    EXIT_NOT_FOUND,
    EXIT_OK,
    EXIT_RUN_FAILED,
    load_registry,
    main,
)
from stepflow.state.store import StateStore
from stepflow.workflow.builtin import WORKFLOW_IMPLEMENT, WORKFLOW_IMPLEMENT_REVIEW
from stepflow.workflow.definition import EVENT_SUCCESS, STEP_DONE
from stepflow.workflow.errors import DefinitionError
from stepflow.workflow.state import StepRecord, WorkflowState

HANDLERS_MODULE = """
from stepflow.workflow.registry import Registry


class Succeed:
    def execute(self, cancel, state):
        state.metadata["executed"] = True
        return "success"

    def dry_run(self, cancel, state):
        return "success"


class Explode:
    def execute(self, cancel, state):
        raise RuntimeError("tests failed")

    def dry_run(self, cancel, state):
        return "success"


class CancelSelf:
    def execute(self, cancel, state):
        cancel.set()
        return "success"

    def dry_run(self, cancel, state):
        return "success"


def build():
    return Registry({"run_implement": Succeed()})


def failing():
    return Registry({"run_implement": Explode()})


def review():
    return Registry(
        {
            "run_implement": CancelSelf(),
            "run_review": Succeed(),
            "check_review": Succeed(),
            "run_fix": Succeed(),
            "create_pr": Succeed(),
        }
    )


NOT_A_REGISTRY = 42
"""


@pytest.fixture(autouse=True)
def _quiet_logs(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STEPFLOW_LOG_LEVEL", "WARNING")


@pytest.fixture
def handlers_module(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    package = tmp_path / "handlers_pkg"
    package.mkdir()
    (package / "stepflow_cli_handlers.py").write_text(
        textwrap.dedent(HANDLERS_MODULE), encoding="utf-8"
    )
    monkeypatch.syspath_prepend(str(package))
    return "stepflow_cli_handlers"


def _run(store: StateStore, *args: str) -> int:
    return main(["--state-dir", str(store.directory), *args])


def _saved_run(store: StateStore, workflow: str, step: str, run_id: str) -> WorkflowState:
    state = WorkflowState.new(workflow, step, run_id=run_id)
    store.save(state)
    return state


def test_workflows_lists_builtins(store: StateStore, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(store, "workflows") == EXIT_OK

    out = capsys.readouterr().out
    assert WORKFLOW_IMPLEMENT_REVIEW in out
    assert "prd-decompose" in out


def test_validate_builtin(store: StateStore, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(store, "validate", WORKFLOW_IMPLEMENT_REVIEW) == EXIT_OK

    out = capsys.readouterr().out
    assert out.startswith("Errors (0):")
    assert "CYCLE_DETECTED" in out


def test_validate_file_with_errors(
    store: StateStore, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    path = tmp_path / "broken.json"
    path.write_text(
        json.dumps(
            {
                "name": "broken",
                "initial_step": "a",
                "steps": [{"name": "a", "transitions": {"success": "nowhere"}}],
            }
        ),
        encoding="utf-8",
    )

    assert _run(store, "validate", "--file", str(path)) == EXIT_CONFIG
    assert "INVALID_TRANSITION_TARGET" in capsys.readouterr().out


def test_validate_against_registry(
    store: StateStore, handlers_module: str, capsys: pytest.CaptureFixture[str]
) -> None:
    code = _run(
        store, "validate", WORKFLOW_IMPLEMENT_REVIEW, "--registry", f"{handlers_module}:build"
    )

    assert code == EXIT_CONFIG
    assert "MISSING_HANDLER" in capsys.readouterr().out


def test_validate_requires_a_workflow(store: StateStore) -> None:
    assert _run(store, "validate") == EXIT_CONFIG


def test_unknown_workflow(store: StateStore, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(store, "plan", "nope") == EXIT_CONFIG
    assert "unknown workflow 'nope'" in capsys.readouterr().err


def test_plan(store: StateStore, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(store, "plan", "pipeline") == EXIT_OK

    out = capsys.readouterr().out
    assert out.startswith("Workflow: pipeline\n")
    assert "partial -> init_phase (cycles back to step 1)" in out


def test_list_empty(store: StateStore, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(store, "list") == EXIT_OK
    assert "No workflow runs found." in capsys.readouterr().out


def test_list_runs(store: StateStore, capsys: pytest.CaptureFixture[str]) -> None:
    _saved_run(store, WORKFLOW_IMPLEMENT, "run_implement", "wf-one")
    _saved_run(store, WORKFLOW_IMPLEMENT, STEP_DONE, "wf-two")

    assert _run(store, "list") == EXIT_OK

    out = capsys.readouterr().out
    assert out.splitlines()[0].startswith("RUN ID")
    assert "wf-one" in out
    assert "completed" in out
    assert "running" in out


def test_show(store: StateStore, capsys: pytest.CaptureFixture[str]) -> None:
    _saved_run(store, WORKFLOW_IMPLEMENT, "run_implement", "wf-show")

    assert _run(store, "show", "wf-show") == EXIT_OK

    payload = json.loads(capsys.readouterr().out)
    assert payload["id"] == "wf-show"
    assert payload["current_step"] == "run_implement"


def test_show_missing_run(store: StateStore, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(store, "show", "wf-missing") == EXIT_NOT_FOUND
    assert "wf-missing" in capsys.readouterr().err


def test_show_corrupt_run(store: StateStore) -> None:
    (store.directory / "wf-bad.json").write_text("{", encoding="utf-8")

    assert _run(store, "show", "wf-bad") == EXIT_CONFIG


def test_path_like_run_ids_are_rejected(store: StateStore) -> None:
    with pytest.raises(SystemExit) as excinfo:
        _run(store, "show", "../../etc/passwd")

    assert excinfo.value.code == 2


def test_clean(store: StateStore, capsys: pytest.CaptureFixture[str]) -> None:
    _saved_run(store, WORKFLOW_IMPLEMENT, "run_implement", "wf-clean")

    assert _run(store, "clean", "wf-clean") == EXIT_OK
    assert "Deleted checkpoint for run wf-clean" in capsys.readouterr().out
    assert _run(store, "clean", "wf-clean") == EXIT_NOT_FOUND


def test_clean_all(store: StateStore, capsys: pytest.CaptureFixture[str]) -> None:
    _saved_run(store, WORKFLOW_IMPLEMENT, "run_implement", "wf-a")
    _saved_run(store, WORKFLOW_IMPLEMENT, "run_implement", "wf-b")

    assert _run(store, "clean-all") == EXIT_CONFIG
    assert len(store.list()) == 2

    assert _run(store, "clean-all", "--force") == EXIT_OK
    assert "Deleted 2 checkpoint(s)" in capsys.readouterr().out
    assert store.list() == []


def test_resume_without_runs(store: StateStore, capsys: pytest.CaptureFixture[str]) -> None:
    assert _run(store, "resume") == EXIT_NOT_FOUND
    assert "No workflow runs to resume." in capsys.readouterr().err


def test_resume_finished_run(store: StateStore, capsys: pytest.CaptureFixture[str]) -> None:
    _saved_run(store, WORKFLOW_IMPLEMENT, STEP_DONE, "wf-done")

    assert _run(store, "resume", "--run", "wf-done") == EXIT_OK
    assert "already finished (completed)" in capsys.readouterr().err


def test_resume_dry_run_shows_resume_point(
    store: StateStore, capsys: pytest.CaptureFixture[str]
) -> None:
    state = WorkflowState.new(WORKFLOW_IMPLEMENT_REVIEW, "run_review", run_id="wf-dry")
    state.add_step_record(StepRecord(step="run_implement", event=EVENT_SUCCESS))
    store.save(state)

    assert _run(store, "resume", "--dry-run") == EXIT_OK

    out = capsys.readouterr().out
    assert "Run: wf-dry (1 steps recorded)" in out
    assert "run_review <- resume here" in out
    assert store.load("wf-dry").current_step == "run_review"


def test_resume_requires_registry(store: StateStore, capsys: pytest.CaptureFixture[str]) -> None:
    _saved_run(store, WORKFLOW_IMPLEMENT, "run_implement", "wf-noreg")

    assert _run(store, "resume", "--run", "wf-noreg") == EXIT_CONFIG
    assert "--registry is required" in capsys.readouterr().err


def test_resume_runs_to_completion(
    store: StateStore, handlers_module: str, capsys: pytest.CaptureFixture[str]
) -> None:
    _saved_run(store, WORKFLOW_IMPLEMENT, "run_implement", "wf-go")

    code = _run(store, "resume", "--run", "wf-go", "--registry", f"{handlers_module}:build")

    assert code == EXIT_OK
    assert "Run wf-go completed (1 steps recorded)" in capsys.readouterr().out
    saved = store.load("wf-go")
    assert saved.current_step == STEP_DONE
    assert saved.metadata == {"executed": True}


def test_resume_failing_run(store: StateStore, handlers_module: str) -> None:
    _saved_run(store, WORKFLOW_IMPLEMENT, "run_implement", "wf-fail")

    code = _run(store, "resume", "--run", "wf-fail", "--registry", f"{handlers_module}:failing")

    assert code == EXIT_RUN_FAILED
    saved = store.load("wf-fail")
    assert store.status(saved) == "failed"
    assert saved.step_history[-1].error == "tests failed"


def test_resume_cancelled_run(store: StateStore, handlers_module: str) -> None:
    _saved_run(store, WORKFLOW_IMPLEMENT_REVIEW, "run_implement", "wf-stop")

    code = _run(store, "resume", "--run", "wf-stop", "--registry", f"{handlers_module}:review")

    assert code == EXIT_CANCELLED
    assert store.load("wf-stop").current_step == "run_review"


def test_resume_with_incomplete_registry(store: StateStore, handlers_module: str) -> None:
    _saved_run(store, WORKFLOW_IMPLEMENT_REVIEW, "run_implement", "wf-partial")

    code = _run(
        store, "resume", "--run", "wf-partial", "--registry", f"{handlers_module}:build"
    )

    assert code == EXIT_CONFIG
    assert store.load("wf-partial").step_history == []


def test_load_registry(handlers_module: str) -> None:
    assert load_registry(f"{handlers_module}:build").names() == ["run_implement"]

    for target in (
        "no-colon",
        f"{handlers_module}:",
        "stepflow_missing_module:build",
        f"{handlers_module}:absent",
        f"{handlers_module}:NOT_A_REGISTRY",
    ):
        with pytest.raises(DefinitionError):
            load_registry(target)


def test_invalid_environment_configuration(
    store: StateStore, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("STEPFLOW_ENGINE_MAX_ITERATIONS", "0")

    assert _run(store, "list") == EXIT_CONFIG
    assert "Configuration error" in capsys.readouterr().err
