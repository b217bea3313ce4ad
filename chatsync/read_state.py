"""Unread counter handling for the open thread."""
import asyncio
from typing import Callable, Set

from .debug_log import get_logger
from .thread_store import ThreadStore

logger = get_logger("read_state")


class ReadStateGate:
    """Clears unread counters locally and acknowledges them to the server.

    The local counter is zeroed at once; the acknowledgment is best-effort and
    never awaited by the caller.
    """

    def __init__(self, threads: ThreadStore, acknowledge: Callable):
        self._threads = threads
        self._acknowledge = acknowledge
        self._tasks: Set[asyncio.Task] = set()
        self._pending: Set[int] = set()

    def on_open(self, thread_id: int) -> None:
        self._threads.mark_read(thread_id)
        self._send_ack(thread_id)

    def on_messages_loaded(self, thread_id: int) -> None:
        """Re-acknowledge if the server still reports unread messages here."""
        if thread_id != self._threads.active_id:
            return
        if self._threads.server_unread(thread_id) > 0:
            logger.debug("thread %s still unread on server, re-acknowledging", thread_id)
            self._threads.mark_read(thread_id)
            self._send_ack(thread_id)

    def _send_ack(self, thread_id: int) -> None:
        if thread_id in self._pending:
            return
        self._pending.add(thread_id)
        task = asyncio.ensure_future(self._ack(thread_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _ack(self, thread_id: int) -> None:
        try:
            await self._acknowledge(thread_id)
        except Exception as e:
            logger.warning("mark-read for thread %s failed: %s", thread_id, e)
            return
        finally:
            self._pending.discard(thread_id)
        self._threads.acknowledged(thread_id)

    @property
    def busy(self) -> bool:
        return bool(self._tasks)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
