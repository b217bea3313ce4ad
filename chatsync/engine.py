"""Conversation sync engine.

ChatEngine wires the stores, the mutation tracker, the poll scheduler, the
read-state gate and the attachment staging area together and exposes the
user actions (open, send, delete, block, search, start conversation).

All store writes happen on the event loop. Backend calls are blocking
``APIInterface`` methods run with ``asyncio.to_thread``; the awaits on those
calls are the only points where other work can interleave.
"""
import asyncio
import itertools
from collections import deque
from datetime import datetime, timezone
from typing import Awaitable, Callable, Deque, Optional, Set, Tuple

from .api_interface import APIInterface
from .attachments import PreviewRegistry, StagedFile, StagingArea
from .config import MIN_SEARCH_LENGTH, Settings
from .data_models import LocalId, Message, MessageId, Notice, ServerId, Thread, UserSummary
from .debug_log import get_logger
from .errors import user_message
from .message_store import MessageStore
from .mutations import MutationKind, MutationStatus, MutationTracker, PendingMutation
from .read_state import ReadStateGate
from .scheduler import AsyncioInterval, IntervalFactory, PollScheduler
from .thread_store import ThreadStore

logger = get_logger("engine")

BLOCKED_NOTICE = "You blocked this user and cannot send them messages."


class ChatEngine:
    def __init__(
        self,
        api: APIInterface,
        settings: Optional[Settings] = None,
        set_interval: IntervalFactory = AsyncioInterval,
        on_notice: Optional[Callable[[Notice], None]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        user_id: int = 0,
    ):
        settings = settings or Settings()
        self.api = api
        self.user_id = user_id
        self.thread_store = ThreadStore()
        self.message_store = MessageStore()
        self.tracker = MutationTracker()
        self.staging = StagingArea()
        self.previews = PreviewRegistry()
        self.read_state = ReadStateGate(self.thread_store, self._acknowledge)
        self.scheduler = PollScheduler(
            self.refresh_threads,
            self.refresh_messages,
            list_interval=settings.list_interval,
            thread_interval=settings.thread_interval,
            set_interval=set_interval,
        )
        self.notices: Deque[Notice] = deque(maxlen=20)
        self.search_results: Tuple[UserSummary, ...] = ()
        self._on_notice = on_notice
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._list_tickets = itertools.count(1)
        self._message_tickets = itertools.count(1)
        self._search_tickets = itertools.count(1)
        self._last_search = 0
        self._tasks: Set[asyncio.Task] = set()

    # --- views for the presentation layer ---
    @property
    def threads(self) -> Tuple[Thread, ...]:
        return self.thread_store.threads

    @property
    def messages(self) -> Tuple[Message, ...]:
        return self.message_store.messages

    @property
    def active_thread(self) -> Optional[Thread]:
        active = self.thread_store.active_id
        return None if active is None else self.thread_store.get(active)

    @property
    def staged(self) -> Tuple[StagedFile, ...]:
        return self.staging.files

    def status_for(self, message_id: MessageId) -> Optional[MutationStatus]:
        return self.tracker.status_for(message_id)

    # --- surface and thread lifecycle ---
    def show_surface(self) -> None:
        self.scheduler.surface_shown()

    def hide_surface(self) -> None:
        self.close_thread()
        self.scheduler.surface_hidden()

    def open_thread(self, thread_id: int) -> None:
        if self.thread_store.active_id != thread_id:
            if self.thread_store.active_id is not None:
                self.close_thread()
            self.thread_store.set_active(thread_id)
            self.message_store.open(thread_id)
        self.read_state.on_open(thread_id)
        self.scheduler.thread_activated()

    def close_thread(self) -> None:
        previous = self.thread_store.active_id
        self.scheduler.thread_closed()
        self.thread_store.set_active(None)
        self.message_store.open(None)
        if previous is not None:
            self.tracker.forget_thread(previous)

    # --- refreshes (poll ticks) ---
    async def refresh_threads(self) -> None:
        ticket = next(self._list_tickets)
        threads = await self._call(self.api.get_threads)
        self.thread_store.refresh_list(threads, ticket=ticket)

    async def refresh_messages(self, thread_id: Optional[int] = None) -> None:
        if thread_id is None:
            thread_id = self.thread_store.active_id
        if thread_id is None:
            return
        ticket = next(self._message_tickets)
        messages = await self._call(self.api.get_messages, thread_id)
        applied = self.message_store.load_snapshot(
            thread_id,
            messages,
            in_flight=self.tracker.is_in_flight,
            hidden=self.tracker.hidden_ids(),
            ticket=ticket,
        )
        if applied:
            self.read_state.on_messages_loaded(thread_id)

    # --- user actions ---
    async def send(self, text: str) -> Optional[PendingMutation]:
        """Send ``text`` plus everything staged to the active thread.

        Returns the send mutation, or None if nothing was sent (no active
        thread, nothing to send, or the peer is blocked).
        """
        thread = self.active_thread
        if thread is None:
            return None
        if not text.strip() and not len(self.staging):
            return None
        if thread.blocked:
            self._notice(BLOCKED_NOTICE, thread.id)
            return None

        files = self.staging.commit()
        paths = [f.path for f in files]
        mutation = self.tracker.begin(MutationKind.SEND, thread.id, content=text, files=paths)
        local_id = mutation.local_id
        self.message_store.append_optimistic(
            Message(
                id=local_id,
                thread_id=thread.id,
                sender_id=self.user_id,
                content=text,
                created_at=self._clock(),
                attachments=self.previews.issue(local_id, files),
            )
        )

        mutation.mark_dispatched()
        try:
            confirmed = await self._call(self.api.send_message, thread.id, text, paths)
        except Exception as e:
            self.tracker.fail(local_id, e)
            self._settle_send(local_id, None)
            self._notice(user_message(e, "Could not send message"), thread.id)
            return mutation

        self.tracker.confirm(local_id, confirmed.id)
        self._settle_send(local_id, confirmed)
        self._spawn(self._refresh_quietly(self.refresh_threads))
        return mutation

    async def delete(self, message_id: ServerId) -> Optional[PendingMutation]:
        """Delete a confirmed message, restoring it by refetch on failure."""
        thread_id = self.message_store.thread_id
        if thread_id is None or not isinstance(message_id, ServerId):
            return None
        if self.tracker.in_flight_delete(message_id) is not None:
            return None
        if self.message_store.remove_confirmed(message_id) is None:
            return None

        mutation = self.tracker.begin(MutationKind.DELETE, thread_id, target=message_id)
        mutation.mark_dispatched()
        try:
            await self._call(self.api.delete_message, thread_id, message_id)
        except Exception as e:
            self.tracker.fail(mutation.local_id, e)
            self._notice(user_message(e, "Could not delete message"), thread_id)
            await self._refresh_quietly(lambda: self.refresh_messages(thread_id))
            return mutation

        self.tracker.confirm(mutation.local_id)
        self._spawn(self._refresh_quietly(self.refresh_threads))
        return mutation

    async def toggle_block(self) -> Optional[PendingMutation]:
        """Block the active thread's peer, or unblock them if already blocked."""
        thread = self.active_thread
        if thread is None or thread.peer_user_id is None:
            return None
        blocking = not thread.blocked
        kind = MutationKind.BLOCK if blocking else MutationKind.UNBLOCK
        call = self.api.block_user if blocking else self.api.unblock_user

        self.thread_store.set_blocked(thread.id, blocking)
        mutation = self.tracker.begin(kind, thread.id, user_id=thread.peer_user_id)
        mutation.mark_dispatched()
        try:
            await self._call(call, thread.peer_user_id)
        except Exception as e:
            self.tracker.fail(mutation.local_id, e)
            self._notice(user_message(e, f"Could not {kind.value} user"), thread.id)
            # the next list snapshot carries the server's flag
            await self._refresh_quietly(self.refresh_threads)
            return mutation

        self.tracker.confirm(mutation.local_id)
        return mutation

    async def search_users(self, query: str) -> Tuple[UserSummary, ...]:
        query = query.strip()
        ticket = next(self._search_tickets)
        self._last_search = ticket
        if len(query) < MIN_SEARCH_LENGTH:
            self.search_results = ()
            return ()
        try:
            results = tuple(await self._call(self.api.search_users, query))
        except Exception as e:
            logger.warning("user search for %r failed: %s", query, e)
            results = ()
        if ticket == self._last_search:
            self.search_results = results
        return results

    async def start_thread(self, user_id: int) -> Optional[Thread]:
        """Open (creating if needed) a direct thread with ``user_id``."""
        try:
            thread_id = await self._call(self.api.start_thread, user_id)
        except Exception as e:
            self._notice(user_message(e, "Could not start conversation"))
            return None

        await self._refresh_quietly(self.refresh_threads)
        if self.thread_store.get(thread_id) is None:
            name = next((u.display_name or u.username for u in self.search_results if u.id == user_id), "")
            self.thread_store.add(Thread(id=thread_id, kind="direct", display_name=name, peer_user_id=user_id))
        self.search_results = ()
        self.open_thread(thread_id)
        return self.thread_store.get(thread_id)

    async def drain(self) -> None:
        """Wait for every background refresh, acknowledgment and follow-up call."""
        while self._tasks or self.scheduler.busy or self.read_state.busy:
            await self.scheduler.drain()
            await self.read_state.drain()
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        self.hide_surface()
        await self.drain()

    # --- helpers ---
    async def _call(self, fn: Callable, *args):
        return await asyncio.to_thread(fn, *args)

    async def _acknowledge(self, thread_id: int) -> None:
        await self._call(self.api.mark_read, thread_id)

    def _settle_send(self, local_id: LocalId, confirmed: Optional[Message]) -> None:
        self.message_store.resolve_optimistic(local_id, confirmed)
        self.previews.release(local_id)

    async def _refresh_quietly(self, refresh: Callable[[], Awaitable[None]]) -> None:
        try:
            await refresh()
        except Exception:
            logger.warning("refresh failed", exc_info=True)

    def _spawn(self, coro: Awaitable) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _notice(self, text: str, thread_id: Optional[int] = None) -> None:
        notice = Notice(text, thread_id)
        logger.info("notice: %s", text)
        self.notices.append(notice)
        if self._on_notice is not None:
            self._on_notice(notice)
