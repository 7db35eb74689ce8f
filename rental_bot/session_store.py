"""
Session Store v1.0
Состояние диалогов: одна сессия на identity, плюс реестр авторизованных чатов.
"""

import time
import threading
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class Flow(Enum):
    """Independent multi-step interactions"""
    AUTH = "auth"
    RENT = "rent"
    ADMIN = "admin"
    ACTIVE_RENTS = "active_rents"


@dataclass
class Session:
    """Current flow, its state and the fields collected so far"""
    identity: int
    flow: Flow
    state: Enum
    fields: Dict[str, Any] = field(default_factory=dict)


class SessionStore:
    """
    Keyed conversational state.

    One session per identity: starting a flow replaces whatever flow the
    identity had, so at most one flow is ever active per identity.
    Optional idle eviction (idle_timeout seconds, 0 disables it).
    """

    def __init__(self, idle_timeout: int = 0, clock=time.monotonic):
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._sessions: Dict[int, Session] = {}
        self._touched: Dict[int, float] = {}
        self._lock = threading.RLock()

    def start(self, identity: int, flow: Flow, state: Enum) -> Session:
        """Create a fresh session, superseding any other flow of this identity"""
        with self._lock:
            previous = self._sessions.get(identity)
            if previous is not None and previous.flow is not flow:
                logger.debug(f"🔄 {identity}: {previous.flow.value} superseded by {flow.value}")
            session = Session(identity=identity, flow=flow, state=state)
            self._sessions[identity] = session
            self._touched[identity] = self._clock()
            return session

    def get(self, identity: int, flow: Optional[Flow] = None) -> Optional[Session]:
        """Session of identity, optionally only if it belongs to `flow`"""
        with self._lock:
            session = self._sessions.get(identity)
            if session is None:
                return None

            if self.idle_timeout:
                age = self._clock() - self._touched[identity]
                if age > self.idle_timeout:
                    self._remove(identity)
                    logger.info(f"🔄 Session expired: {identity} (idle {age:.0f}s)")
                    return None

            if flow is not None and session.flow is not flow:
                return None
            self._touched[identity] = self._clock()
            return session

    def active_flow(self, identity: int) -> Optional[Flow]:
        session = self.get(identity)
        return session.flow if session else None

    def end(self, identity: int, flow: Optional[Flow] = None) -> bool:
        """Remove the session; with `flow` given only if that flow is the active one"""
        with self._lock:
            session = self._sessions.get(identity)
            if session is None or (flow is not None and session.flow is not flow):
                return False
            self._remove(identity)
            return True

    def _remove(self, identity: int) -> None:
        self._sessions.pop(identity, None)
        self._touched.pop(identity, None)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._touched.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class AuthRegistry:
    """Authenticated identities mapped to their login. Entries never expire."""

    def __init__(self):
        self._logins: Dict[int, str] = {}
        self._lock = threading.RLock()

    def mark_authenticated(self, identity: int, login: str) -> None:
        with self._lock:
            self._logins[identity] = login
        logger.info(f"✅ {identity} authenticated as {login}")

    def is_authenticated(self, identity: int) -> bool:
        with self._lock:
            return identity in self._logins

    def login_for(self, identity: int) -> Optional[str]:
        with self._lock:
            return self._logins.get(identity)
