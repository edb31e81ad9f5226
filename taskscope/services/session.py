import logging
from typing import Callable, Optional

from taskscope.models import CaptureSession
from taskscope.services.database import DatabaseManager, now_timestamp
from taskscope.services.errors import SessionError

logger = logging.getLogger(__name__)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class SessionLifecycle:
    """Opens and closes capture sessions.

    ``on_session_start`` runs after the row exists and before the first
    capture tick; the controller uses it to clear per-monitor state.
    """

    def __init__(self, store: DatabaseManager, on_session_start: Optional[Callable[[], None]] = None):
        self.store = store
        self.on_session_start = on_session_start

    def start(self, description: Optional[str] = None, title: Optional[str] = None) -> int:
        session_id = self.store.create_session(
            description=_clean(description),
            title=_clean(title),
            started_at=now_timestamp(),
        )
        logger.info(f"Started capture session {session_id}")
        if self.on_session_start is not None:
            self.on_session_start()
        return session_id

    def stop(self, session_id: int) -> str:
        if self.store.get_session(session_id) is None:
            raise SessionError(f"Session {session_id} not found")
        ended_at = self.store.end_session(session_id)
        logger.info(f"Ended capture session {session_id} at {ended_at}")
        return ended_at

    def current(self, session_id: Optional[int] = None) -> Optional[CaptureSession]:
        if session_id is not None:
            return self.store.get_session(session_id)
        return self.store.get_open_session()
