"""Per-session correlation of tool call announcements with their results.

A result may arrive in a separate message from its announcement, sometimes
without a shared id. The registry resolves it in order: supplied id, then
the last id announced for the same tool name, then a synthesized
``<name>-<ordinal>`` id. An upstream id that first appears after an id-less
announcement becomes an alias of the synthesized record, so the events already
emitted for that call keep their id. A registry lives exactly as long as one
session.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from ..core.timing_logger import timed

LOGGER = logging.getLogger(__name__)


class ToolCallState(str, enum.Enum):
    ANNOUNCED = "announced"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class ToolCallRecord:
    id: str
    name: str
    arguments: Any = None
    result: Any = None
    state: ToolCallState = ToolCallState.ANNOUNCED

    @property
    def pending(self) -> bool:
        return self.state is ToolCallState.ANNOUNCED


class ToolCallRegistry:
    """Maps tool call ids to records for the lifetime of one session."""

    def __init__(self, *, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or LOGGER
        self._records: Dict[str, ToolCallRecord] = {}
        self._last_id_by_name: Dict[str, str] = {}
        self._aliases: Dict[str, str] = {}
        self._synthesized: Set[str] = set()
        self._counter = 0
        self._closed = False

    def _synthesize(self, name: str) -> str:
        self._counter += 1
        call_id = f"{name}-{self._counter}"
        self._synthesized.add(call_id)
        return call_id

    def _canonical(self, call_id: str) -> str:
        return self._aliases.get(call_id, call_id)

    def _pending_synthesized(self, name: str) -> Optional[ToolCallRecord]:
        last_id = self._last_id_by_name.get(name)
        if not last_id or last_id not in self._synthesized:
            return None
        record = self._records.get(last_id)
        return record if record is not None and record.pending else None

    def get(self, call_id: str) -> Optional[ToolCallRecord]:
        return self._records.get(self._canonical(call_id))

    @timed
    def announce(
        self,
        name: str,
        supplied_id: Optional[str] = None,
        arguments: Any = None,
    ) -> tuple[str, bool]:
        """Register an announced call and return ``(id, is_new)``.

        Without a supplied id, the last call announced under ``name`` is
        reused while it is still pending, so one call announced twice (stream
        block, then tool call message) maps to one record. The same holds when
        only the second announcement carries an id.
        """
        call_id = self._canonical(supplied_id) if supplied_id else None
        if call_id and call_id not in self._records:
            adopted = self._pending_synthesized(name)
            if adopted is not None:
                self._aliases[call_id] = adopted.id
                self._synthesized.discard(adopted.id)
                self.logger.debug("Tool call id %s attached to announced call %s", call_id, adopted.id)
                call_id = adopted.id
        if not call_id:
            last_id = self._last_id_by_name.get(name)
            last = self._records.get(last_id) if last_id else None
            call_id = last_id if last is not None and last.pending else self._synthesize(name)

        existing = self._records.get(call_id)
        if existing is not None:
            if arguments and not existing.arguments:
                existing.arguments = arguments
            self._last_id_by_name[name] = call_id
            return call_id, False

        self._records[call_id] = ToolCallRecord(id=call_id, name=name, arguments=arguments)
        self._last_id_by_name[name] = call_id
        return call_id, True

    @timed
    def resolve(
        self,
        name: str,
        supplied_id: Optional[str] = None,
        result: Any = None,
        *,
        failed: bool = False,
    ) -> tuple[str, bool]:
        """Mark a call terminal and return ``(id, newly_resolved)``.

        ``newly_resolved`` is False when the matching record had already been
        resolved, which lets callers skip duplicate results.
        """
        call_id = self._canonical(supplied_id) if supplied_id else self._last_id_by_name.get(name)
        if not call_id:
            call_id = self._synthesize(name)
            self.logger.debug("Tool result for '%s' has no matching announcement; using id %s", name, call_id)

        record = self._records.get(call_id)
        if record is None:
            record = ToolCallRecord(id=call_id, name=name)
            self._records[call_id] = record
        elif not record.pending:
            return call_id, False

        record.result = result
        record.state = ToolCallState.FAILED if failed else ToolCallState.COMPLETED
        return call_id, True

    def pending(self) -> List[ToolCallRecord]:
        return [record for record in self._records.values() if record.pending]

    @property
    def resolved_count(self) -> int:
        return sum(1 for record in self._records.values() if not record.pending)

    def close(self) -> List[ToolCallRecord]:
        """Discard all records, reporting announcements that never got a result."""
        if self._closed:
            return []
        self._closed = True
        unmatched = self.pending()
        for record in unmatched:
            self.logger.debug("Tool call %s (%s) ended without a result", record.id, record.name)
        self._records.clear()
        self._last_id_by_name.clear()
        self._aliases.clear()
        self._synthesized.clear()
        return unmatched
