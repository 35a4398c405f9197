import queue
import threading

import pytest

from proactornet.threads import Thread, current_tid


def test_basic_thread_function():
    results = queue.Queue()

    def work():
        results.put(("done", current_tid()))

    t = Thread(work, "my thread")
    t.start()
    assert t.started is True
    assert t.name == "my thread"
    status, tid = results.get(timeout=5)
    assert status == "done"
    assert tid == t.tid
    t.join()


def test_tid_differs_from_caller():
    t = Thread(lambda: None)
    t.start()
    t.join()
    assert t.tid != current_tid()
    assert t.tid > 0


def test_join_before_start():
    t = Thread(lambda: None)
    with pytest.raises(RuntimeError, match=r"Thread\.join\(\).*started"):
        t.join()


def test_double_join():
    t = Thread(lambda: None)
    t.start()
    t.join()
    with pytest.raises(RuntimeError, match="already been joined"):
        t.join()


def test_default_name_uses_counter():
    t = Thread(lambda: None)
    assert t.name == f"Thread{Thread.num_created()}"


def test_num_created_increments():
    before = Thread.num_created()
    Thread(lambda: None, "a")
    assert Thread.num_created() == before + 1


def test_current_tid_is_stable():
    tid = current_tid()
    assert tid == threading.get_native_id()
    assert current_tid() == tid