"""Append-only tool invocation log with flagged reversal."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

from agent_task_engine.errors import IrreversibleEntry, NotFound
from agent_task_engine.state.manager import StateManager
from agent_task_engine.state.models import ToolLogEntry, utc_now_iso

logger = logging.getLogger(__name__)


class Compensator(Protocol):
    """Undo the effect of a recorded tool call and describe what was done."""

    def __call__(self, entry: ToolLogEntry) -> Any: ...


CompensatorLookup = Callable[[str], Compensator | None]


class ToolLog:
    """Tool log entries grouped by workid, ordinals contiguous per workid.

    Consumers must not assume reversed entries are absent, only flagged.
    """

    def __init__(
        self, manager: StateManager, compensators: CompensatorLookup | None = None
    ) -> None:
        self._manager = manager
        self._registered: dict[str, Compensator] = {}
        self._lookup = compensators

    def register_compensator(self, tool: str, compensator: Compensator) -> None:
        self._registered[tool] = compensator

    def compensator_for(self, tool: str) -> Compensator | None:
        if tool in self._registered:
            return self._registered[tool]
        if self._lookup is not None:
            return self._lookup(tool)
        return None

    def append(
        self,
        *,
        workid: str,
        tool: str,
        request: Any = None,
        response: Any = None,
        planid: str | None = None,
        task_id: int | None = None,
        node_id: str | None = None,
        compensates: int | None = None,
    ) -> int:
        """Record an invocation and return its ordinal."""
        with self._manager.transaction() as state:
            entries = state.tool_log.setdefault(workid, [])
            ordinal = len(entries) + 1
            entries.append(
                ToolLogEntry(
                    id=state.next_log_id,
                    workid=workid,
                    ordinal=ordinal,
                    tool=tool,
                    planid=planid,
                    task_id=task_id,
                    node_id=node_id,
                    request=request,
                    response=response,
                    compensates=compensates,
                )
            )
            state.next_log_id += 1

        logger.debug(
            "Tool call recorded",
            extra={"workid": workid, "ordinal": ordinal, "tool": tool, "task_id": task_id},
        )
        return ordinal

    def get(self, workid: str, ordinal: int) -> ToolLogEntry:
        with self._manager.reading() as state:
            return self._get_unlocked(state.tool_log.get(workid, []), workid, ordinal).model_copy(
                deep=True
            )

    def history(self, workid: str) -> list[ToolLogEntry]:
        with self._manager.reading() as state:
            return [e.model_copy(deep=True) for e in state.tool_log.get(workid, [])]

    def reverse_entry(self, workid: str, ordinal: int) -> ToolLogEntry:
        """Reverse one entry through its tool's compensating action.

        Reversing an already-reversed entry is a no-op. Raises IrreversibleEntry
        when the tool has no compensator or the compensator fails; the entry is
        left unreversed in that case.
        """

        entry = self.get(workid, ordinal)
        if entry.reversed:
            return entry
        if entry.compensates is not None:
            raise IrreversibleEntry(
                f"Entry {ordinal} is itself a compensation and cannot be reversed",
                workid=workid,
                ordinal=ordinal,
                tool=entry.tool,
            )

        compensator = self.compensator_for(entry.tool)
        if compensator is None:
            raise IrreversibleEntry(
                f"Tool {entry.tool!r} exposes no compensating action",
                workid=workid,
                ordinal=ordinal,
                tool=entry.tool,
            )

        with self._manager.transaction() as state:
            try:
                result = compensator(entry)
            except Exception as e:
                logger.warning(
                    "Compensating action failed",
                    extra={"workid": workid, "ordinal": ordinal, "tool": entry.tool},
                    exc_info=True,
                )
                raise IrreversibleEntry(
                    f"Compensating action for {entry.tool!r} failed: {e}",
                    workid=workid,
                    ordinal=ordinal,
                    tool=entry.tool,
                ) from e

            self.append(
                workid=workid,
                tool=entry.tool,
                request=entry.response,
                response=result,
                planid=entry.planid,
                task_id=entry.task_id,
                node_id=entry.node_id,
                compensates=ordinal,
            )
            entries = state.tool_log[workid]
            stored = self._get_unlocked(entries, workid, ordinal).model_copy(
                update={"reversed": True, "reversed_at": utc_now_iso()}
            )
            entries[ordinal - 1] = stored
            reversed_entry = stored.model_copy(deep=True)

        logger.info(
            "Tool call reversed", extra={"workid": workid, "ordinal": ordinal, "tool": entry.tool}
        )
        return reversed_entry

    @staticmethod
    def _get_unlocked(entries: list[ToolLogEntry], workid: str, ordinal: int) -> ToolLogEntry:
        if 1 <= ordinal <= len(entries):
            return entries[ordinal - 1]
        raise NotFound(
            f"Tool log entry not found: {workid}#{ordinal}", workid=workid, ordinal=ordinal
        )
