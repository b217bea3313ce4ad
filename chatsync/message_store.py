"""Messages of the open thread, including provisional (not yet confirmed) ones.

The list is always sorted by ``created_at``; equal timestamps keep the order
in which entries were appended.
"""
from bisect import bisect_right
from typing import Callable, Container, Iterable, List, Optional, Tuple

from .data_models import LocalId, Message, MessageId, ServerId
from .debug_log import get_logger

logger = get_logger("message_store")


def _ordered(messages: Iterable[Message]) -> List[Message]:
    # sorted() is stable, so ties keep insertion order
    return sorted(messages, key=lambda m: m.created_at)


class MessageStore:
    def __init__(self):
        self._thread_id: Optional[int] = None
        self._messages: List[Message] = []
        self._last_ticket = 0

    @property
    def thread_id(self) -> Optional[int]:
        return self._thread_id

    @property
    def messages(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    def open(self, thread_id: Optional[int]) -> None:
        """Switch to another thread (or none), dropping the previous list."""
        self._thread_id = thread_id
        self._messages = []
        self._last_ticket = 0

    def get(self, message_id: MessageId) -> Optional[Message]:
        index = self._index(message_id)
        return None if index is None else self._messages[index]

    def load_snapshot(
        self,
        thread_id: int,
        messages: Iterable[Message],
        in_flight: Callable[[LocalId], bool] = lambda _: False,
        hidden: Container[ServerId] = (),
        ticket: Optional[int] = None,
    ) -> bool:
        """Merge an authoritative snapshot into the list.

        Confirmed entries are replaced by the snapshot. Provisional entries
        survive only while ``in_flight`` says their send is still pending.
        Confirmed ids in ``hidden`` (deletes in progress) are left out.
        Returns False when the snapshot was discarded (other thread or an
        older ticket than one already applied).
        """
        if thread_id != self._thread_id:
            logger.debug("discarding snapshot for thread %s (open: %s)", thread_id, self._thread_id)
            return False
        if ticket is not None:
            if ticket < self._last_ticket:
                logger.debug("discarding stale snapshot (ticket %d < %d)", ticket, self._last_ticket)
                return False
            self._last_ticket = ticket

        confirmed = [m for m in messages if not m.provisional and m.id not in hidden]
        pending = [m for m in self._messages if m.provisional and in_flight(m.id)]
        self._messages = _ordered(confirmed + pending)
        return True

    def append_optimistic(self, message: Message) -> None:
        if not message.provisional:
            raise ValueError(f"{message.id} is not a local id")
        if message.thread_id != self._thread_id:
            raise ValueError(f"message for thread {message.thread_id}, open thread is {self._thread_id}")
        position = bisect_right(self._messages, message.created_at, key=lambda m: m.created_at)
        self._messages.insert(position, message)

    def resolve_optimistic(self, local_id: LocalId, confirmed: Optional[Message]) -> bool:
        """Settle a provisional entry.

        With a confirmed message the entry is replaced in place (or simply
        dropped if a poll already delivered that server id). With None the
        entry is removed. Returns False if the entry was no longer present.
        """
        index = self._index(local_id)
        if index is None:
            return False
        if confirmed is None or self._index(confirmed.id) is not None:
            del self._messages[index]
            return True
        self._messages[index] = confirmed
        self._messages = _ordered(self._messages)
        return True

    def remove_confirmed(self, message_id: ServerId) -> Optional[Message]:
        index = self._index(message_id)
        if index is None:
            return None
        return self._messages.pop(index)

    def _index(self, message_id: MessageId) -> Optional[int]:
        for i, message in enumerate(self._messages):
            if message.id == message_id:
                return i
        return None
