"""Optimistic mutation tracking.

Every user-initiated write gets a PendingMutation keyed by a fresh LocalId.
A mutation moves from IN_FLIGHT to exactly one terminal state, CONFIRMED or
FAILED, and is never retried; a retry is a new mutation with a new id.
"""
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, Optional

from .data_models import LocalId, MessageId, ServerId
from .debug_log import get_logger
from .errors import MutationStateError

logger = get_logger("mutations")


class MutationKind(Enum):
    SEND = "send"
    DELETE = "delete"
    BLOCK = "block"
    UNBLOCK = "unblock"


class MutationStatus(Enum):
    IN_FLIGHT = "in-flight"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class PendingMutation:
    local_id: LocalId
    kind: MutationKind
    thread_id: int
    payload: Dict[str, Any] = field(default_factory=dict)
    target: Optional[ServerId] = None
    status: MutationStatus = MutationStatus.IN_FLIGHT
    dispatched: bool = False
    server_id: Optional[ServerId] = None
    error: Optional[Exception] = None

    @property
    def in_flight(self) -> bool:
        return self.status is MutationStatus.IN_FLIGHT

    def mark_dispatched(self) -> None:
        """Record that the network call was issued; only one call per mutation."""
        if not self.in_flight:
            raise MutationStateError(f"{self.local_id} is {self.status.value}, cannot dispatch")
        if self.dispatched:
            raise MutationStateError(f"{self.local_id} already has a call outstanding")
        self.dispatched = True

    def confirm(self, server_id: Optional[ServerId] = None) -> None:
        self._finish(MutationStatus.CONFIRMED)
        self.server_id = server_id

    def fail(self, error: Exception) -> None:
        self._finish(MutationStatus.FAILED)
        self.error = error

    def _finish(self, status: MutationStatus) -> None:
        if not self.in_flight:
            raise MutationStateError(
                f"{self.local_id} is already {self.status.value}, cannot become {status.value}"
            )
        self.status = status


class MutationTracker:
    def __init__(self):
        self._ids = itertools.count(1)
        self._mutations: Dict[LocalId, PendingMutation] = {}

    def begin(
        self,
        kind: MutationKind,
        thread_id: int,
        target: Optional[ServerId] = None,
        **payload,
    ) -> PendingMutation:
        local_id = LocalId(next(self._ids))
        mutation = PendingMutation(local_id, kind, thread_id, payload=payload, target=target)
        self._mutations[local_id] = mutation
        logger.debug("begin %s %s (thread %s)", kind.value, local_id, thread_id)
        return mutation

    def get(self, local_id: LocalId) -> Optional[PendingMutation]:
        return self._mutations.get(local_id)

    def _require(self, local_id: LocalId) -> PendingMutation:
        try:
            return self._mutations[local_id]
        except KeyError:
            raise MutationStateError(f"unknown mutation {local_id}") from None

    def __iter__(self) -> Iterator[PendingMutation]:
        return iter(list(self._mutations.values()))

    def __len__(self) -> int:
        return len(self._mutations)

    def confirm(self, local_id: LocalId, server_id: Optional[ServerId] = None) -> PendingMutation:
        mutation = self._require(local_id)
        mutation.confirm(server_id)
        logger.debug("confirmed %s %s -> %s", mutation.kind.value, local_id, server_id)
        return mutation

    def fail(self, local_id: LocalId, error: Exception) -> PendingMutation:
        mutation = self._require(local_id)
        mutation.fail(error)
        logger.warning("%s %s failed: %s", mutation.kind.value, local_id, error)
        return mutation

    def is_in_flight(self, local_id: LocalId) -> bool:
        mutation = self._mutations.get(local_id)
        return mutation is not None and mutation.in_flight

    def in_flight_delete(self, message_id: ServerId) -> Optional[PendingMutation]:
        for mutation in self._mutations.values():
            if mutation.kind is MutationKind.DELETE and mutation.target == message_id and mutation.in_flight:
                return mutation
        return None

    def hidden_ids(self) -> frozenset:
        """Confirmed message ids with a delete still in flight."""
        return frozenset(
            m.target for m in self._mutations.values()
            if m.kind is MutationKind.DELETE and m.in_flight
        )

    def status_for(self, message_id: MessageId) -> Optional[MutationStatus]:
        """Status shown next to a message: its send, or its latest delete."""
        if isinstance(message_id, LocalId):
            mutation = self._mutations.get(message_id)
            return None if mutation is None else mutation.status
        latest = None
        for mutation in self._mutations.values():
            if mutation.kind is MutationKind.DELETE and mutation.target == message_id:
                latest = mutation
        return None if latest is None else latest.status

    def forget_thread(self, thread_id: int) -> None:
        """Drop settled mutations of a thread once it is closed."""
        self._mutations = {
            k: m for k, m in self._mutations.items()
            if m.thread_id != thread_id or m.in_flight
        }
