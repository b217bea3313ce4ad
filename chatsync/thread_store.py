"""Thread list state.

The store keeps an immutable tuple of Thread snapshots and swaps it wholesale
on every write, so a refresh never interleaves with a local update field by
field.
"""
from dataclasses import replace
from typing import Dict, Iterable, Optional, Tuple

from .data_models import Thread
from .debug_log import get_logger

logger = get_logger("thread_store")


class ThreadStore:
    def __init__(self):
        self._threads: Tuple[Thread, ...] = ()
        self._active_id: Optional[int] = None
        # unread counts the server reported for the active thread, kept
        # aside while the visible counter stays at zero
        self._server_unread: Dict[int, int] = {}
        self._last_ticket = 0

    @property
    def threads(self) -> Tuple[Thread, ...]:
        return self._threads

    @property
    def active_id(self) -> Optional[int]:
        return self._active_id

    def get(self, thread_id: int) -> Optional[Thread]:
        for thread in self._threads:
            if thread.id == thread_id:
                return thread
        return None

    def set_active(self, thread_id: Optional[int]) -> None:
        self._active_id = thread_id

    def refresh_list(self, threads: Iterable[Thread], ticket: Optional[int] = None) -> bool:
        """Replace the snapshot with ``threads``.

        The active thread's unread count is forced to 0. Returns False if the
        snapshot was older than one already applied and got discarded.
        """
        if ticket is not None:
            if ticket < self._last_ticket:
                logger.debug("discarding stale thread list (ticket %d < %d)", ticket, self._last_ticket)
                return False
            self._last_ticket = ticket

        snapshot = []
        for thread in threads:
            if thread.id == self._active_id:
                if thread.unread_count > 0:
                    self._server_unread[thread.id] = thread.unread_count
                else:
                    self._server_unread.pop(thread.id, None)
                thread = replace(thread, unread_count=0)
            snapshot.append(thread)
        self._threads = tuple(snapshot)
        return True

    def add(self, thread: Thread) -> None:
        """Insert a thread (from starting a conversation) if it is not listed yet."""
        if self.get(thread.id) is None:
            self._threads = (thread,) + self._threads

    def mark_read(self, thread_id: int) -> None:
        self._update(thread_id, unread_count=0)

    def set_blocked(self, thread_id: int, value: bool) -> None:
        self._update(thread_id, blocked=value)

    def server_unread(self, thread_id: int) -> int:
        """Unread count last reported by the server for a thread held at zero."""
        return self._server_unread.get(thread_id, 0)

    def acknowledged(self, thread_id: int) -> None:
        self._server_unread.pop(thread_id, None)

    def _update(self, thread_id: int, **changes) -> None:
        self._threads = tuple(
            replace(t, **changes) if t.id == thread_id else t for t in self._threads
        )
