import pytest

from chatsync.data_models import Thread
from chatsync.thread_store import ThreadStore


def thread(thread_id, unread=0, blocked=False) -> Thread:
    return Thread(id=thread_id, kind="direct", display_name=f"t{thread_id}", unread_count=unread, blocked=blocked)


def test_refresh_replaces_snapshot():
    store = ThreadStore()
    store.refresh_list([thread(1), thread(2)])
    store.refresh_list([thread(3)])

    assert [t.id for t in store.threads] == [3]


def test_active_thread_unread_forced_to_zero():
    store = ThreadStore()
    store.set_active(2)

    store.refresh_list([thread(1, unread=3), thread(2, unread=5)])

    assert store.get(1).unread_count == 3
    assert store.get(2).unread_count == 0
    assert store.server_unread(2) == 5


def test_server_unread_cleared_by_ack_and_by_zero_report():
    store = ThreadStore()
    store.set_active(1)
    store.refresh_list([thread(1, unread=2)])

    store.acknowledged(1)
    assert store.server_unread(1) == 0

    store.refresh_list([thread(1, unread=2)])
    store.refresh_list([thread(1, unread=0)])
    assert store.server_unread(1) == 0


def test_mark_read_is_copy_on_write():
    store = ThreadStore()
    store.refresh_list([thread(1, unread=4), thread(2, unread=1)])
    before = store.threads

    store.mark_read(1)

    assert store.get(1).unread_count == 0
    assert before[0].unread_count == 4
    assert store.threads is not before
    assert store.threads[1] is before[1]


def test_set_blocked():
    store = ThreadStore()
    store.refresh_list([thread(1)])

    store.set_blocked(1, True)
    assert store.get(1).blocked
    store.set_blocked(1, False)
    assert not store.get(1).blocked


def test_unknown_thread_updates_are_ignored():
    store = ThreadStore()
    store.refresh_list([thread(1)])

    store.mark_read(99)
    store.set_blocked(99, True)

    assert [t.id for t in store.threads] == [1]


def test_stale_list_discarded():
    store = ThreadStore()
    assert store.refresh_list([thread(1), thread(2)], ticket=5)
    assert not store.refresh_list([thread(1)], ticket=4)
    assert [t.id for t in store.threads] == [1, 2]


def test_add_prepends_only_new_threads():
    store = ThreadStore()
    store.refresh_list([thread(1)])

    store.add(thread(2))
    store.add(thread(1, unread=9))

    assert [t.id for t in store.threads] == [2, 1]
    assert store.get(1).unread_count == 0


def test_negative_unread_rejected():
    with pytest.raises(ValueError):
        thread(1, unread=-1)
