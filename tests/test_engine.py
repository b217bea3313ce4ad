import asyncio
import threading

from chatsync.attachments import is_preview
from chatsync.data_models import LocalId, ServerId, Thread, UserSummary
from chatsync.engine import BLOCKED_NOTICE
from chatsync.errors import ServerRejected, TransportError
from chatsync.mutations import MutationKind, MutationStatus

from conftest import server_message


async def open_loaded(engine, api, thread):
    api.threads = [thread]
    await engine.refresh_threads()
    engine.open_thread(thread.id)
    await engine.drain()


def message_ids(engine):
    return [m.id for m in engine.messages]


# --- read state ---

async def test_opening_thread_clears_unread_before_ack(engine, api, direct_thread):
    api.threads = [direct_thread]
    await engine.refresh_threads()
    assert engine.threads[0].unread_count == 4

    api.gates["mark_read"] = threading.Event()
    engine.open_thread(1)

    assert engine.threads[0].unread_count == 0

    api.gates["mark_read"].set()
    await engine.drain()
    assert ("mark_read", 1) in api.calls


async def test_list_refresh_keeps_active_thread_read(engine, api, direct_thread):
    await open_loaded(engine, api, direct_thread)
    other = Thread(id=2, kind="group", display_name="team", unread_count=2)
    api.threads = [direct_thread, other]

    await engine.refresh_threads()

    assert engine.thread_store.get(1).unread_count == 0
    assert engine.thread_store.get(2).unread_count == 2


async def test_message_load_reacknowledges_server_unread(engine, api, direct_thread):
    await open_loaded(engine, api, direct_thread)
    assert api.names().count("mark_read") == 1

    await engine.refresh_threads()
    await engine.refresh_messages()
    await engine.drain()

    assert api.names().count("mark_read") == 2
    assert engine.thread_store.server_unread(1) == 0
    assert engine.active_thread.unread_count == 0


async def test_ack_failure_is_not_surfaced(engine, api, direct_thread):
    api.fail["mark_read"] = TransportError("offline")

    await open_loaded(engine, api, direct_thread)

    assert engine.active_thread.unread_count == 0
    assert list(engine.notices) == []


# --- send ---

async def test_send_with_attachment_end_to_end(engine, api, direct_thread, tmp_path):
    image = tmp_path / "photo.png"
    image.write_bytes(b"\x89PNG")
    await open_loaded(engine, api, direct_thread)
    engine.staging.stage(image)

    api.gates["send_message"] = threading.Event()
    task = asyncio.create_task(engine.send("hi"))
    await asyncio.sleep(0)

    [pending] = engine.messages
    assert isinstance(pending.id, LocalId)
    assert pending.content == "hi"
    assert is_preview(pending.attachments[0].url)
    assert engine.previews.is_live(pending.attachments[0].url)
    assert engine.staged == ()
    assert engine.status_for(pending.id) is MutationStatus.IN_FLIGHT

    api.gates["send_message"].set()
    mutation = await task
    await engine.drain()

    [confirmed] = engine.messages
    assert isinstance(confirmed.id, ServerId)
    assert confirmed.id == mutation.server_id
    assert confirmed.attachments[0].url == "https://cdn.example.com/photo.png"
    assert not engine.previews.is_live(pending.attachments[0].url)
    assert engine.staged == ()
    assert api.calls[-1] == ("get_threads",)


async def test_send_failure_removes_provisional_and_notifies(engine, api, direct_thread):
    await open_loaded(engine, api, direct_thread)
    api.fail["send_message"] = ServerRejected(413, "Attachment too large")

    mutation = await engine.send("hello")

    assert mutation.status is MutationStatus.FAILED
    assert all(m.id != mutation.local_id for m in engine.messages)
    assert engine.notices[-1].text == "Attachment too large"


async def test_send_transport_failure_uses_default_text(engine, api, direct_thread):
    await open_loaded(engine, api, direct_thread)
    api.fail["send_message"] = TransportError("connection reset")

    await engine.send("hello")

    assert engine.notices[-1].text == "Network error"
    assert engine.messages == ()


async def test_failed_send_is_not_retried(engine, api, direct_thread):
    await open_loaded(engine, api, direct_thread)
    api.fail["send_message"] = TransportError("down")

    await engine.send("hello")
    await engine.refresh_messages()
    await engine.drain()

    assert api.names().count("send_message") == 1


async def test_nothing_to_send(engine, api, direct_thread):
    assert await engine.send("hi") is None
    await open_loaded(engine, api, direct_thread)

    assert await engine.send("   ") is None
    assert "send_message" not in api.names()


async def test_poll_during_send_keeps_provisional(engine, api, direct_thread, intervals):
    await open_loaded(engine, api, direct_thread)
    api.messages[1] = [server_message(1, seconds=0)]
    api.gates["send_message"] = threading.Event()

    task = asyncio.create_task(engine.send("pending"))
    await asyncio.sleep(0)
    intervals.fire(3.0)
    await engine.scheduler.drain()

    assert message_ids(engine)[0] == ServerId(1)
    assert isinstance(message_ids(engine)[1], LocalId)

    api.gates["send_message"].set()
    await task
    await engine.drain()
    await engine.refresh_messages()

    assert len(engine.messages) == 2
    assert all(isinstance(i, ServerId) for i in message_ids(engine))


# --- delete ---

async def test_delete_failure_restores_by_refetch(engine, api, direct_thread):
    api.messages[1] = [server_message(41, seconds=1), server_message(42, seconds=2), server_message(43, seconds=3)]
    await open_loaded(engine, api, direct_thread)
    assert message_ids(engine) == [ServerId(41), ServerId(42), ServerId(43)]

    api.gates["delete_message"] = threading.Event()
    api.fail["delete_message"] = TransportError("timeout")
    task = asyncio.create_task(engine.delete(ServerId(42)))
    await asyncio.sleep(0)

    assert ServerId(42) not in message_ids(engine)

    api.gates["delete_message"].set()
    mutation = await task

    assert mutation.status is MutationStatus.FAILED
    assert message_ids(engine) == [ServerId(41), ServerId(42), ServerId(43)]
    assert engine.notices[-1].text == "Network error"
    assert engine.status_for(ServerId(42)) is MutationStatus.FAILED


async def test_delete_success(engine, api, direct_thread):
    api.messages[1] = [server_message(41), server_message(42, seconds=1)]
    await open_loaded(engine, api, direct_thread)
    list_refreshes = api.names().count("get_threads")

    mutation = await engine.delete(ServerId(42))
    await engine.drain()
    assert api.names().count("get_threads") == list_refreshes + 1
    await engine.refresh_messages()

    assert mutation.status is MutationStatus.CONFIRMED
    assert message_ids(engine) == [ServerId(41)]


async def test_poll_does_not_resurrect_message_mid_delete(engine, api, direct_thread, intervals):
    api.messages[1] = [server_message(41), server_message(42, seconds=1)]
    await open_loaded(engine, api, direct_thread)
    api.gates["delete_message"] = threading.Event()

    task = asyncio.create_task(engine.delete(ServerId(42)))
    await asyncio.sleep(0)
    intervals.fire(3.0)
    await engine.scheduler.drain()

    assert message_ids(engine) == [ServerId(41)]
    assert await engine.delete(ServerId(42)) is None

    api.gates["delete_message"].set()
    await task
    await engine.drain()


async def test_delete_ignores_provisional_and_unknown(engine, api, direct_thread):
    await open_loaded(engine, api, direct_thread)

    assert await engine.delete(LocalId(1)) is None
    assert await engine.delete(ServerId(999)) is None
    assert "delete_message" not in api.names()


# --- block ---

async def test_block_then_send_is_rejected_locally(engine, api, direct_thread):
    await open_loaded(engine, api, direct_thread)

    mutation = await engine.toggle_block()
    assert mutation.kind is MutationKind.BLOCK
    assert engine.active_thread.blocked
    assert ("block_user", 9) in api.calls

    calls_before = list(api.calls)
    assert await engine.send("hi") is None

    assert api.calls == calls_before
    assert engine.messages == ()
    assert not any(m.kind is MutationKind.SEND for m in engine.tracker)
    assert engine.notices[-1].text == BLOCKED_NOTICE


async def test_unblock_uses_distinct_call(engine, api, direct_thread):
    blocked = Thread(id=1, kind="direct", display_name="alice", blocked=True, peer_user_id=9)
    await open_loaded(engine, api, blocked)

    mutation = await engine.toggle_block()

    assert mutation.kind is MutationKind.UNBLOCK
    assert ("unblock_user", 9) in api.calls
    assert not engine.active_thread.blocked


async def test_block_failure_converges_on_refresh(engine, api, direct_thread):
    await open_loaded(engine, api, direct_thread)
    api.fail["block_user"] = ServerRejected(500)

    mutation = await engine.toggle_block()

    assert mutation.status is MutationStatus.FAILED
    assert not engine.active_thread.blocked
    assert api.calls[-1] == ("get_threads",)


async def test_block_needs_peer(engine, api):
    group = Thread(id=3, kind="group", display_name="team")
    await open_loaded(engine, api, group)

    assert await engine.toggle_block() is None


# --- polling lifecycle ---

async def test_surface_and_thread_timers(engine, api, direct_thread, intervals):
    api.threads = [direct_thread, Thread(id=2, kind="direct", display_name="bob")]
    engine.show_surface()
    engine.show_surface()
    await engine.drain()
    assert len(intervals.active(5.0)) == 1
    assert len(engine.threads) == 2

    engine.open_thread(1)
    engine.open_thread(2)
    await engine.drain()
    assert len(intervals.active(3.0)) == 1
    assert engine.thread_store.active_id == 2

    engine.close_thread()
    assert intervals.active(3.0) == []
    assert len(intervals.active(5.0)) == 1

    engine.hide_surface()
    assert intervals.active() == []


async def test_switching_thread_discards_late_snapshot(engine, api, direct_thread):
    api.threads = [direct_thread, Thread(id=2, kind="direct", display_name="bob")]
    api.messages[1] = [server_message(1, thread_id=1)]
    api.messages[2] = [server_message(2, thread_id=2)]
    await engine.refresh_threads()
    api.gates["get_messages"] = threading.Event()

    engine.open_thread(1)
    await asyncio.sleep(0.01)
    engine.open_thread(2)
    api.gates["get_messages"].set()
    await engine.drain()

    assert message_ids(engine) == [ServerId(2)]


async def test_poll_failure_is_absorbed(engine, api, direct_thread, intervals):
    await open_loaded(engine, api, direct_thread)
    api.fail["get_messages"] = TransportError("down")
    api.fail["get_threads"] = TransportError("down")
    engine.show_surface()

    intervals.fire(3.0)
    intervals.fire(5.0)
    await engine.drain()

    assert list(engine.notices) == []
    assert engine.scheduler.thread_scope.polling


# --- search and start ---

async def test_short_search_short_circuits(engine, api):
    assert await engine.search_users(" a ") == ()
    assert "search_users" not in api.names()


async def test_search_and_start_thread(engine, api):
    api.users = [UserSummary(id=9, username="carol", display_name="Carol")]

    results = await engine.search_users("car")
    assert [u.id for u in results] == [9]
    assert engine.search_results == results

    thread = await engine.start_thread(9)
    await engine.drain()

    assert thread.display_name == "Carol"
    assert thread.peer_user_id == 9
    assert engine.thread_store.active_id == thread.id
    assert engine.search_results == ()


async def test_search_failure_leaves_no_results(engine, api):
    api.fail["search_users"] = TransportError("down")

    assert await engine.search_users("carol") == ()
    assert list(engine.notices) == []


async def test_start_thread_failure_notifies(engine, api):
    api.fail["start_thread"] = ServerRejected(404, "User not found")

    assert await engine.start_thread(9) is None
    assert engine.notices[-1].text == "User not found"
