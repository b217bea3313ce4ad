"""Periodic refresh scopes.

A PollScope owns one repeating timer. Starting a scope always stops its
previous timer first, so start() can be called any number of times and
leaves exactly one timer running.

Timers come from an interval factory with the signature of Textual's
``set_interval(interval, callback)``: it returns a handle with ``stop()``.
Outside a Textual app, AsyncioInterval provides the same thing on the running
event loop.
"""
import asyncio
import inspect
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol, Set

from .debug_log import get_logger

logger = get_logger("scheduler")

Refresh = Callable[[], Awaitable[Any]]


class TimerHandle(Protocol):
    def stop(self) -> None: ...


IntervalFactory = Callable[[float, Callable[[], Any]], TimerHandle]


class ScopeState(Enum):
    STOPPED = "stopped"
    IDLE = "idle"
    POLLING = "polling"


class AsyncioInterval:
    """Repeating timer on the running asyncio loop.

    Each tick runs the callback; a coroutine result is scheduled as a task
    and not awaited, so a slow tick never delays the next one.
    """

    def __init__(self, interval: float, callback: Callable[[], Any]):
        self.interval = interval
        self.callback = callback
        self._loop = asyncio.get_running_loop()
        self._tasks: Set[asyncio.Task] = set()
        self._handle: Optional[asyncio.TimerHandle] = self._loop.call_later(interval, self._fire)

    def _fire(self) -> None:
        self._handle = self._loop.call_later(self.interval, self._fire)
        result = self.callback()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    @property
    def active(self) -> bool:
        return self._handle is not None


class PollScope:
    """One independently scheduled refresh cycle."""

    def __init__(
        self,
        name: str,
        interval: float,
        refresh: Refresh,
        set_interval: IntervalFactory = AsyncioInterval,
        rest_state: ScopeState = ScopeState.STOPPED,
    ):
        self.name = name
        self.interval = interval
        self.refresh = refresh
        self._set_interval = set_interval
        self._rest_state = rest_state
        self.state = rest_state
        self._timer: Optional[TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def polling(self) -> bool:
        return self.state is ScopeState.POLLING

    def start(self, immediate: bool = False) -> None:
        self.stop()
        self._timer = self._set_interval(self.interval, self.tick)
        self.state = ScopeState.POLLING
        logger.debug("%s scope polling every %ss", self.name, self.interval)
        if immediate:
            self.tick()

    def stop(self) -> None:
        """Cancel the timer. Requests already issued are left to finish."""
        if self._timer is not None:
            self._timer.stop()
            self._timer = None
            logger.debug("%s scope stopped", self.name)
        self.state = self._rest_state

    def tick(self) -> asyncio.Task:
        """Run one refresh in the background without waiting for earlier ones."""
        task = asyncio.ensure_future(self._run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self) -> None:
        try:
            await self.refresh()
        except Exception:
            # a missed refresh waits for the next tick
            logger.warning("%s refresh failed", self.name, exc_info=True)

    @property
    def busy(self) -> bool:
        return bool(self._tasks)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class PollScheduler:
    """The two refresh cycles of the chat surface.

    Both scopes refresh immediately whenever they are (re)started. The list
    scope follows surface visibility, the thread scope the active thread.
    """

    def __init__(
        self,
        refresh_list: Refresh,
        refresh_thread: Refresh,
        list_interval: float = 5.0,
        thread_interval: float = 3.0,
        set_interval: IntervalFactory = AsyncioInterval,
    ):
        self.list_scope = PollScope("list", list_interval, refresh_list, set_interval)
        self.thread_scope = PollScope(
            "thread", thread_interval, refresh_thread, set_interval, rest_state=ScopeState.IDLE
        )

    def surface_shown(self) -> None:
        self.list_scope.start(immediate=True)

    def surface_hidden(self) -> None:
        self.list_scope.stop()
        self.thread_scope.stop()

    def thread_activated(self) -> None:
        self.thread_scope.start(immediate=True)

    def thread_closed(self) -> None:
        self.thread_scope.stop()

    @property
    def busy(self) -> bool:
        return self.list_scope.busy or self.thread_scope.busy

    async def drain(self) -> None:
        await self.list_scope.drain()
        await self.thread_scope.drain()
