"""
Persistence for the TDD workflow.

Two layers:

- PersistenceGateway: holds the single caller-registered callback that the
  orchestrator invokes with the complete state after each accepted transition.
  It performs no I/O itself.
- SnapshotStore: the file-backed checkpoint used by the caller-facing tools.
  Snapshots are pretty-printed UTF-8 JSON written atomically (temp file +
  os.replace); a JSONL history of state changes sits next to them. Access is
  serialized with FileLock by the caller holding `store.lock()`.
"""

import copy
import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from filelock import FileLock

from .errors import NotFoundError, StateCorruptionError


logger = logging.getLogger(__name__)

PersistCallback = Callable[[dict], Any]


class PersistenceGateway:
    """Invokes a registered callback with the full workflow state."""

    def __init__(self):
        self._callback: Optional[PersistCallback] = None

    @property
    def enabled(self) -> bool:
        return self._callback is not None

    def enable(self, callback: PersistCallback) -> None:
        if not callable(callback):
            raise TypeError("Persistence callback must be callable")
        self._callback = callback

    def disable(self) -> None:
        self._callback = None

    def persist(self, state: dict) -> bool:
        """Hand a copy of `state` to the callback. Returns False when none is registered."""
        if self._callback is None:
            return False
        self._callback(copy.deepcopy(state))
        return True


class SnapshotStore:
    """A workflow snapshot on disk, plus its state-change history."""

    def __init__(
        self,
        state_file: Path,
        history_file: Optional[Path] = None,
        lock_timeout: float = 10
    ):
        self.state_file = Path(state_file)
        self.history_file = Path(history_file) if history_file else None
        self.lock_timeout = lock_timeout
        self._last_saved: Optional[dict] = None

    def lock(self) -> FileLock:
        lock_file = self.state_file.with_name(self.state_file.name + ".lock")
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(str(lock_file), timeout=self.lock_timeout)

    def exists(self) -> bool:
        return self.state_file.exists()

    def load(self) -> dict:
        if not self.state_file.exists():
            raise NotFoundError(f"No workflow state found at {self.state_file}")

        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                snapshot = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StateCorruptionError(
                f"Workflow state file {self.state_file} is not valid JSON: {e}"
            ) from e

        self._last_saved = copy.deepcopy(snapshot)
        return snapshot

    def save(self, state: dict) -> None:
        """Atomically replace the snapshot with `state`."""
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.state_file.parent),
            prefix=f".{self.state_file.name}.tmp."
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state, f, indent=2)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.state_file)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        previous = self._last_saved
        self._last_saved = copy.deepcopy(state)
        self._append_history(previous, state)
        logger.debug("Persisted workflow state to %s", self.state_file)

    def delete(self, include_history: bool = False) -> bool:
        removed = False
        if self.state_file.exists():
            self.state_file.unlink()
            removed = True
        if include_history and self.history_file and self.history_file.exists():
            self.history_file.unlink()
        self._last_saved = None
        return removed

    def _append_history(self, old_state: Optional[dict], new_state: dict) -> None:
        """Append a state_change entry when tracked fields change."""
        if self.history_file is None:
            return

        changes: dict[str, Any] = {}
        old_context = (old_state or {}).get("context", {})
        new_context = new_state.get("context", {})

        old_phase = (old_state or {}).get("phase")
        if old_phase != new_state.get("phase"):
            changes["phase"] = {"from": old_phase, "to": new_state.get("phase")}

        for field in ("currentSubtaskIndex", "currentTDDPhase"):
            if old_context.get(field) != new_context.get(field):
                changes[field] = {"from": old_context.get(field), "to": new_context.get(field)}

        old_errors = len(old_context.get("errors", []))
        new_errors = len(new_context.get("errors", []))
        if new_errors > old_errors:
            changes["errors"] = {"added": new_context["errors"][old_errors:]}

        if not changes:
            return

        parts = []
        for field, delta in changes.items():
            if "added" in delta:
                parts.append(f"{field} +{len(delta['added'])}")
            else:
                parts.append(f"{field} {delta['from']} -> {delta['to']}")

        entry = {
            "timestamp": datetime.now().isoformat(),
            "type": "state_change",
            "task_id": new_context.get("taskId"),
            "content": "State changed: " + ", ".join(parts),
            "metadata": {"changes": changes},
        }

        try:
            self.history_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.history_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            # history is an audit trail; the snapshot itself is already durable
            logger.warning("Could not append workflow history to %s: %s", self.history_file, e)
