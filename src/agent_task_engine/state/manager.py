"""State management for persistent execution state."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from agent_task_engine.state.models import ExecutionState, utc_now_iso

logger = logging.getLogger(__name__)


class StateManager:
    """Single coordinating access point for tasks, plans and the tool log.

    All mutation goes through :meth:`transaction`. The outermost transaction
    writes the whole document atomically when it succeeds and restores the prior
    in-memory state when it raises, so no partial step is ever observable.
    """

    def __init__(self, path: Path | None = None) -> None:
        """Initialize the state manager.

        Args:
            path: JSON file backing the state. None keeps state in memory only.
        """
        self.path = path
        self._lock = threading.RLock()
        self._depth = 0
        self._state = ExecutionState()

        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.load()

    @property
    def state(self) -> ExecutionState:
        return self._state

    def load(self) -> ExecutionState:
        """Load state from persistent storage.

        Returns:
            Loaded state object.
        """
        if self.path is None or not self.path.exists():
            logger.info("No existing state found, starting fresh")
            return self._state

        with self._lock:
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
                self._state = ExecutionState.model_validate(data)
            except Exception:
                logger.exception("Failed to load state", extra={"path": str(self.path)})
                raise

            logger.info(
                "State loaded",
                extra={
                    "path": str(self.path),
                    "tasks": len(self._state.tasks),
                    "plans": len(self._state.plans),
                },
            )
        return self._state

    def save(self) -> None:
        """Save state to persistent storage, replacing the file atomically."""
        if self.path is None:
            return

        with self._lock:
            self._state.updated_at = utc_now_iso()
            payload = json.dumps(
                self._state.model_dump(mode="json"), indent=2, ensure_ascii=False
            )
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload + "\n")
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except Exception:
                logger.exception("Failed to save state", extra={"path": str(self.path)})
                Path(tmp_name).unlink(missing_ok=True)
                raise

    @contextmanager
    def transaction(self) -> Iterator[ExecutionState]:
        """Mutate state atomically.

        Nested transactions join the outermost one.
        """
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield self._state
                finally:
                    self._depth -= 1
                return

            snapshot = self._snapshot()
            self._depth = 1
            try:
                yield self._state
                self.save()
            except BaseException:
                self._state = snapshot
                raise
            finally:
                self._depth = 0

    def _snapshot(self) -> ExecutionState:
        # Task records, tool log entries and events are replaced, never edited in
        # place, so copying their containers is enough. Plans are edited in place.
        current = self._state
        return current.model_copy(
            update={
                "tasks": dict(current.tasks),
                "plans": {k: p.model_copy(deep=True) for k, p in current.plans.items()},
                "tool_log": {w: list(entries) for w, entries in current.tool_log.items()},
                "events": list(current.events),
            }
        )

    @contextmanager
    def reading(self) -> Iterator[ExecutionState]:
        """Hold the lock while reading a consistent view."""
        with self._lock:
            yield self._state
