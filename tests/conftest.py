"""Shared fakes for the chatsync tests.

FakeAPI stands in for the REST backend: it keeps threads and messages in
memory, records every call, and can be told to fail a method or to hold it
on a threading.Event until the test releases it. ManualIntervals replaces
the timer factory so poll ticks only happen when a test fires them.
"""
from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from chatsync.api_interface import APIInterface, attachment_kind
from chatsync.config import Settings
from chatsync.data_models import Attachment, Message, ServerId, Thread, UserSummary
from chatsync.engine import ChatEngine

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def at(seconds: int) -> datetime:
    return T0 + timedelta(seconds=seconds)


def server_message(msg_id: int, thread_id: int = 1, content: str = "", seconds: int = 0, sender_id: int = 2) -> Message:
    return Message(
        id=ServerId(msg_id),
        thread_id=thread_id,
        sender_id=sender_id,
        content=content or f"message {msg_id}",
        created_at=at(seconds),
    )


class FakeAPI(APIInterface):
    def __init__(self):
        self.threads: List[Thread] = []
        self.messages: Dict[int, List[Message]] = {}
        self.users: List[UserSummary] = []
        self.calls: List[tuple] = []
        self.fail: Dict[str, Exception] = {}
        self.gates: Dict[str, threading.Event] = {}
        self.next_id = 1000
        self.next_thread_id = 500

    def _enter(self, name: str, *args) -> None:
        self.calls.append((name,) + args)
        gate = self.gates.get(name)
        if gate is not None:
            gate.wait(5)
        error = self.fail.get(name)
        if error is not None:
            raise error

    def names(self) -> List[str]:
        return [c[0] for c in self.calls]

    def get_threads(self) -> List[Thread]:
        self._enter("get_threads")
        return list(self.threads)

    def get_messages(self, thread_id: int) -> List[Message]:
        self._enter("get_messages", thread_id)
        return list(self.messages.get(thread_id, []))

    def send_message(self, thread_id, content, files=()) -> Message:
        self._enter("send_message", thread_id, content, list(files))
        self.next_id += 1
        message = Message(
            id=ServerId(self.next_id),
            thread_id=thread_id,
            sender_id=7,
            content=content,
            created_at=datetime.now(timezone.utc),
            attachments=tuple(
                Attachment(i + 1, f"https://cdn.example.com/{p.name}", attachment_kind(p.name), p.name)
                for i, p in enumerate(files)
            ),
        )
        self.messages.setdefault(thread_id, []).append(message)
        return message

    def delete_message(self, thread_id, message_id) -> None:
        self._enter("delete_message", thread_id, message_id)
        self.messages[thread_id] = [m for m in self.messages.get(thread_id, []) if m.id != message_id]

    def mark_read(self, thread_id) -> None:
        self._enter("mark_read", thread_id)

    def block_user(self, user_id) -> None:
        self._enter("block_user", user_id)

    def unblock_user(self, user_id) -> None:
        self._enter("unblock_user", user_id)

    def search_users(self, query) -> List[UserSummary]:
        self._enter("search_users", query)
        return [u for u in self.users if query.lower() in u.username.lower()]

    def start_thread(self, user_id) -> int:
        self._enter("start_thread", user_id)
        self.next_thread_id += 1
        return self.next_thread_id


class ManualTimer:
    def __init__(self, interval, callback):
        self.interval = interval
        self.callback = callback
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class ManualIntervals:
    def __init__(self):
        self.timers: List[ManualTimer] = []

    def __call__(self, interval, callback) -> ManualTimer:
        timer = ManualTimer(interval, callback)
        self.timers.append(timer)
        return timer

    def active(self, interval: Optional[float] = None) -> List[ManualTimer]:
        return [
            t for t in self.timers
            if not t.stopped and (interval is None or t.interval == interval)
        ]

    def fire(self, interval: float) -> None:
        for timer in self.active(interval):
            timer.callback()


@pytest.fixture
def api() -> FakeAPI:
    return FakeAPI()


@pytest.fixture
def intervals() -> ManualIntervals:
    return ManualIntervals()


@pytest.fixture
def engine(api, intervals) -> ChatEngine:
    return ChatEngine(api, settings=Settings(), set_interval=intervals, user_id=7)


@pytest.fixture
def direct_thread() -> Thread:
    return Thread(id=1, kind="direct", display_name="alice", unread_count=4, peer_user_id=9)
