from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from ..llm.providers import Message


@dataclass
class _Session:
    messages: list[Message] = field(default_factory=list)
    touched_at: float = 0.0


class SessionStore:
    """In-memory conversation histories keyed by session id.

    A history longer than ``max_messages`` is cut down to its first message,
    which carries the injected schema context, plus the most recent
    ``max_messages - 1``. Sessions idle for more than ``ttl_seconds`` are
    dropped by :meth:`reap`, which also runs on every access.
    """

    def __init__(
        self,
        max_messages: int = 20,
        ttl_seconds: int = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_messages = max_messages
        self._ttl = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, _Session] = {}
        self._lock = threading.Lock()
        self._log = logging.getLogger(__name__)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def messages(self, session_id: str) -> list[Message]:
        with self._lock:
            self._reap_locked()
            session = self._sessions.get(session_id)
            return list(session.messages) if session else []

    def is_new(self, session_id: str) -> bool:
        return not self.messages(session_id)

    def append(self, session_id: str, message: Message) -> list[Message]:
        """Append a message and return a copy of the trimmed history."""
        with self._lock:
            self._reap_locked()
            session = self._sessions.setdefault(session_id, _Session())
            session.messages.append(message)
            if len(session.messages) > self._max_messages:
                keep = self._max_messages - 1
                session.messages = [session.messages[0], *session.messages[-keep:]]
            session.touched_at = self._clock()
            return list(session.messages)

    def discard(self, session_id: str, message: Message) -> None:
        """Remove ``message`` if it is still the newest entry of the session."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session and session.messages and session.messages[-1] is message:
                session.messages.pop()
                if not session.messages:
                    del self._sessions[session_id]

    def clear(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def reap(self) -> int:
        with self._lock:
            return self._reap_locked()

    def _reap_locked(self) -> int:
        if self._ttl == -1:
            return 0
        cutoff = self._clock() - self._ttl
        expired = [sid for sid, s in self._sessions.items() if s.touched_at < cutoff]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            self._log.info("Evicted %d idle sessions", len(expired))
        return len(expired)
