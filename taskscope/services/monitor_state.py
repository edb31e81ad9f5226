import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from taskscope.models import MonitorState

logger = logging.getLogger(__name__)


class MonitorStateTable:
    """Per-monitor fingerprint, summary and display name for the current session.

    Written by the capture loop (fingerprints) and by analysis passes
    (summaries). Every method holds the lock for a single read-modify-write
    and never across I/O.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._states: Dict[int, MonitorState] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def get(self, monitor_id: int) -> Optional[MonitorState]:
        with self._lock:
            state = self._states.get(monitor_id)
            if state is None:
                return None
            return MonitorState(state.last_hash, state.name, state.last_summary)

    def last_hash(self, monitor_id: int):
        with self._lock:
            state = self._states.get(monitor_id)
            return state.last_hash if state else None

    def insert(self, monitor_id: int, state: MonitorState) -> None:
        with self._lock:
            self._states[monitor_id] = state

    def update_hash(self, monitor_id: int, fingerprint, name: Optional[str] = None) -> None:
        """Store a new fingerprint, creating the entry on first sight.

        The summary is always preserved; the name is refreshed when given.
        """
        with self._lock:
            state = self._states.get(monitor_id)
            if state is None:
                self._states[monitor_id] = MonitorState(
                    last_hash=fingerprint,
                    name=name or f"Monitor {monitor_id}",
                )
                return
            state.last_hash = fingerprint
            if name:
                state.name = name

    def update_summary(self, monitor_id: int, text: str) -> bool:
        with self._lock:
            state = self._states.get(monitor_id)
            if state is None:
                return False
            state.last_summary = text
            return True

    def update_summary_by_name(self, name: str, text: str) -> int:
        """Apply a provider summary to every monitor with this display name.

        Provider results are keyed by name, so duplicate names fan out to
        all matching ids. Returns how many entries were updated.
        """
        updated = 0
        with self._lock:
            for state in self._states.values():
                if state.name == name:
                    state.last_summary = text
                    updated += 1
        if updated == 0:
            logger.debug(f"No monitor named {name!r} for summary update")
        return updated

    def display_name(self, monitor_id: int) -> str:
        with self._lock:
            state = self._states.get(monitor_id)
            return state.name if state else f"Monitor {monitor_id}"

    def unchanged_summaries(self, exclude_ids: Iterable[int]) -> List[Tuple[int, str, str]]:
        """(id, name, summary) for monitors outside ``exclude_ids`` with a summary"""
        excluded = set(exclude_ids)
        with self._lock:
            return [
                (monitor_id, state.name, state.last_summary)
                for monitor_id, state in sorted(self._states.items())
                if monitor_id not in excluded and state.last_summary
            ]

    def clear(self) -> None:
        with self._lock:
            self._states.clear()
