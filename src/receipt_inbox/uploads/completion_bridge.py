"""
Completion handler bridge.

The host process is told, independently of normal app logic, that every
transfer of a named background session has drained, and hands over a
callback that must run once the results are safely persisted. This may
happen before the pipeline has finished starting up (cold background
launch), so callbacks are held here until the owner releases them.

Lifecycle, owned by UploadManager:
1. hold() may be called at any time, from any thread
2. release() is called by the single event consumer after all earlier
   completions are folded into the store
3. drain() runs every still-held callback at teardown
"""

import logging
import threading
from collections import deque
from collections.abc import Callable

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[], None]


class CompletionBridge:
    """Holds background-session completion callbacks until it is safe to run them."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._held: dict[str, deque[CompletionCallback]] = {}

    def hold(self, session_id: str, callback: CompletionCallback) -> None:
        """Keep a callback for a session until it is released."""
        with self._lock:
            self._held.setdefault(session_id, deque()).append(callback)
        logger.debug(f"Holding completion handler for session '{session_id}'")

    def pending_sessions(self) -> list[str]:
        with self._lock:
            return [session for session, callbacks in self._held.items() if callbacks]

    def has_pending(self, session_id: str | None = None) -> bool:
        with self._lock:
            if session_id is None:
                return any(self._held.values())
            return bool(self._held.get(session_id))

    def release(self, session_id: str) -> bool:
        """
        Run the oldest held callback for a session, exactly once.

        Returns False when no callback is held for the session.
        """
        with self._lock:
            callbacks = self._held.get(session_id)
            if not callbacks:
                return False
            callback = callbacks.popleft()
            if not callbacks:
                del self._held[session_id]

        # Invoked outside the lock; a callback may attach a new handler
        self._invoke(session_id, callback)
        return True

    def drain(self) -> int:
        """Run every held callback. Returns how many ran."""
        with self._lock:
            held = [(s, cb) for s, callbacks in self._held.items() for cb in callbacks]
            self._held.clear()

        for session_id, callback in held:
            self._invoke(session_id, callback)
        return len(held)

    @staticmethod
    def _invoke(session_id: str, callback: CompletionCallback) -> None:
        try:
            callback()
        except Exception:
            logger.exception(f"Completion handler for session '{session_id}' raised")
        else:
            logger.info(f"Signalled completion for background session '{session_id}'")
