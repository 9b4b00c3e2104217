"""Durable checkpoint storage for workflow runs.

One pretty-printed JSON file per run, named after the sanitized run id. Writes
go to a temporary file in the same directory, are flushed and fsynced, then
atomically renamed over the previous checkpoint, so a reader sees either the
old or the new snapshot and never a partial one. Each run only writes its own
file; no locking is needed between concurrent runs.
"""

from __future__ import annotations

import builtins
import logging
import os
import re
import tempfile
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Literal, TextIO

from pydantic import BaseModel, ValidationError
from pydantic_core import PydanticSerializationError

from stepflow.workflow.definition import EVENT_FAILURE, STEP_DONE, STEP_FAILED
from stepflow.workflow.errors import CorruptCheckpointError, PersistenceError, RunNotFoundError
from stepflow.workflow.state import WorkflowState, utc_now

if TYPE_CHECKING:
    from stepflow.core.config import StateConfig

logger = logging.getLogger(__name__)

RunStatus = Literal["completed", "failed", "running", "interrupted"]

DEFAULT_STALE_AFTER = timedelta(minutes=5)

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class RunSummary(BaseModel):
    """Listing projection of a stored run."""

    id: str
    workflow_name: str
    current_step: str
    status: RunStatus
    updated_at: datetime
    step_count: int


def sanitize_id(run_id: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_-]`` with ``_``."""

    return _UNSAFE_ID_CHARS.sub("_", run_id)


def status_from_state(
    state: WorkflowState,
    now: datetime | None = None,
    stale_after: timedelta = DEFAULT_STALE_AFTER,
) -> RunStatus:
    """Derive a run's status from its checkpoint.

    A non-terminal run counts as ``running`` while its last update is newer
    than ``stale_after``; older ones were left behind by a process that exited
    early and are ``interrupted``.
    """

    if state.current_step == STEP_DONE:
        return "completed"
    if state.current_step == STEP_FAILED:
        return "failed"

    last = state.last_step()
    if (
        last is not None
        and (last.error is not None or last.event == EVENT_FAILURE)
        and state.current_step == last.step
    ):
        return "failed"

    now = now or utc_now()
    if now - state.updated_at <= stale_after:
        return "running"
    return "interrupted"


class StateStore:
    """File-backed store of :class:`WorkflowState` checkpoints."""

    def __init__(self, directory: Path, *, stale_after: timedelta = DEFAULT_STALE_AFTER) -> None:
        self.directory = Path(directory)
        self.stale_after = stale_after
        self.directory.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(cls, config: StateConfig) -> StateStore:
        return cls(config.storage_path, stale_after=timedelta(seconds=config.stale_after_seconds))

    def path_for(self, run_id: str) -> Path:
        return self.directory / f"{sanitize_id(run_id)}.json"

    def save(self, state: WorkflowState) -> None:
        """Atomically replace the checkpoint for ``state.id``."""

        key = sanitize_id(state.id)
        if not key:
            raise PersistenceError("cannot save a run with an empty id")
        path = self.directory / f"{key}.json"
        try:
            payload = state.model_dump_json(indent=2) + "\n"
        except PydanticSerializationError as e:
            raise PersistenceError(
                f"cannot serialize run {state.id}: {e}", run_id=state.id
            ) from e

        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        except OSError as e:
            raise PersistenceError(
                f"cannot save checkpoint for run {state.id}: {e}", run_id=state.id
            ) from e

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                self._write_payload(fh, payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise PersistenceError(
                f"cannot save checkpoint for run {state.id}: {e}", run_id=state.id
            ) from e
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        self._sync_directory()
        logger.debug(
            "Checkpoint saved",
            extra={"run_id": state.id, "step": state.current_step, "path": str(path)},
        )

    def load(self, run_id: str) -> WorkflowState:
        if not sanitize_id(run_id):
            raise RunNotFoundError(f"run {run_id!r} not found", run_id=run_id)
        path = self.path_for(run_id)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            raise RunNotFoundError(
                f"run {run_id!r} not found in {self.directory}", run_id=run_id
            ) from None
        except OSError as e:
            raise PersistenceError(f"cannot read checkpoint for run {run_id!r}: {e}") from e

        try:
            return WorkflowState.model_validate_json(raw)
        except (ValidationError, UnicodeDecodeError) as e:
            raise CorruptCheckpointError(
                f"checkpoint for run {run_id!r} is corrupt ({path}): {e}",
                run_id=run_id,
            ) from e

    def list(self) -> builtins.list[RunSummary]:
        """Summaries of every readable run, most recently updated first."""

        summaries = [self.summarize(state) for state in self._iter_states()]
        summaries.sort(key=lambda s: s.updated_at, reverse=True)
        return summaries

    def latest_run(self) -> WorkflowState | None:
        return max(self._iter_states(), key=lambda s: s.updated_at, default=None)

    def delete(self, run_id: str) -> None:
        """Remove a checkpoint. Unknown ids raise :class:`RunNotFoundError`."""

        if not sanitize_id(run_id):
            raise RunNotFoundError(f"run {run_id!r} not found", run_id=run_id)
        try:
            self.path_for(run_id).unlink()
        except FileNotFoundError:
            raise RunNotFoundError(
                f"run {run_id!r} not found in {self.directory}", run_id=run_id
            ) from None
        except OSError as e:
            raise PersistenceError(f"cannot delete checkpoint for run {run_id!r}: {e}") from e
        logger.info("Checkpoint deleted", extra={"run_id": run_id})

    def delete_all(self) -> int:
        removed = 0
        for path in self._checkpoint_files():
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            removed += 1
        logger.info("Checkpoints deleted", extra={"count": removed})
        return removed

    def status(self, state: WorkflowState) -> RunStatus:
        return status_from_state(state, stale_after=self.stale_after)

    def summarize(self, state: WorkflowState) -> RunSummary:
        return RunSummary(
            id=state.id,
            workflow_name=state.workflow_name,
            current_step=state.current_step,
            status=self.status(state),
            updated_at=state.updated_at,
            step_count=len(state.step_history),
        )

    def _write_payload(self, fh: TextIO, payload: str) -> None:
        fh.write(payload)

    def _checkpoint_files(self) -> builtins.list[Path]:
        if not self.directory.is_dir():
            return []
        return [p for p in sorted(self.directory.glob("*.json")) if p.is_file()]

    def _iter_states(self) -> Iterator[WorkflowState]:
        for path in self._checkpoint_files():
            try:
                state = WorkflowState.model_validate_json(path.read_bytes())
            except FileNotFoundError:
                continue
            except (OSError, ValidationError, UnicodeDecodeError) as e:
                logger.warning(
                    "Skipping unreadable checkpoint",
                    extra={"path": str(path), "error": str(e)},
                )
                continue
            yield state

    def _sync_directory(self) -> None:
        # Persist the rename itself. Not every platform can open a directory.
        try:
            fd = os.open(self.directory, os.O_RDONLY)
        except OSError:
            return
        try:
            os.fsync(fd)
        except OSError as e:
            logger.debug(
                "Directory fsync failed", extra={"path": str(self.directory), "error": str(e)}
            )
        finally:
            os.close(fd)


def checkpointing(store: StateStore) -> Callable[[WorkflowState], None]:
    """Post-step hook that saves the run after every transition."""

    def _save(state: WorkflowState) -> None:
        store.save(state)

    return _save
