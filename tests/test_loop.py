import errno
import socket
import threading
import time

import pytest

from proactornet.loop import (
    CQE_BUFFER_SHIFT,
    CQE_F_BUFFER,
    CQE_F_MORE,
    EventLoop,
    IoContext,
    LoopParams,
)
from proactornet.sock import Socket, create_nonblocking
from proactornet.inet_address import InetAddress
from proactornet.threads import current_tid
from proactornet.timestamp import MonotonicTimestamp, add_time


@pytest.fixture
def loop():
    lp = EventLoop(1024, 32)
    lp.run_after(5.0, lp.quit)  # safety net
    yield lp
    lp.close()


@pytest.fixture
def pair():
    a, b = socket.socketpair()
    a.setblocking(False)
    yield a, b
    a.close()
    b.close()


class Recorder(IoContext):
    def __init__(self, loop, fd, stop_after=1, iovecs=(), hook=None):
        self.loop = loop
        self.fd = fd
        self.iovecs = list(iovecs)
        self.stop_after = stop_after
        self.hook = hook
        self.events = []

    def on_completion(self):
        self.events.append((self.res, self.flags))
        if self.hook is not None:
            self.hook(self)
        if len(self.events) >= self.stop_after:
            self.loop.quit()


# -- timers (carried over from the timer queue tests) --------------------


def test_basic_timer(loop):
    called = []
    loop.run_at(add_time(MonotonicTimestamp.now(), 0.1), lambda: (called.append(1), loop.quit()))
    loop.loop()
    assert called == [1]
    assert loop.poll_return_time.valid()


def test_repeating_timer(loop):
    count = [0]

    def tick():
        count[0] += 1
        if count[0] == 3:
            loop.quit()

    loop.run_every(0.1, tick)
    loop.loop()
    assert count[0] == 3
    assert loop.poll_return_time.valid()


def test_cancel_timer(loop):
    fired = []
    timer_id = loop.run_at(add_time(MonotonicTimestamp.now(), 0.1), lambda: fired.append("no"))
    loop.cancel(timer_id)
    loop.run_at(
        add_time(MonotonicTimestamp.now(), 0.2), lambda: (fired.append("yes"), loop.quit())
    )
    loop.loop()
    assert fired == ["yes"]


def test_cancel_during_callback(loop):
    count = [0]
    holder = {}

    def tick():
        count[0] += 1
        if count[0] == 2:
            loop.cancel(holder["id"])
            loop.run_at(add_time(MonotonicTimestamp.now(), 0.1), loop.quit)

    holder["id"] = loop.run_every(0.1, tick)
    loop.loop()
    assert count[0] == 2
    assert loop.poll_return_time.valid()


def test_multiple_timers_same_time(loop):
    count = [0]

    def task():
        count[0] += 1

    when = add_time(MonotonicTimestamp.now(), 0.1)
    first = loop.run_at(when, task)
    loop.run_at(when, task)
    loop.run_at(when, task)
    loop.run_at(when, task)
    loop.cancel(first)
    loop.run_at(add_time(MonotonicTimestamp.now(), 0.2), loop.quit)
    loop.loop()
    assert count[0] == 3
    assert loop.poll_return_time.valid()


# -- loop mechanics --------------------------------------------------------


def test_one_loop_per_thread(loop):
    with pytest.raises(RuntimeError):
        EventLoop(16, 4)


def test_new_loop_after_close():
    first = EventLoop(16, 4)
    first.close()
    second = EventLoop(16, 4)
    try:
        assert second.is_in_loop_thread() is True
    finally:
        second.close()


def test_from_params():
    with EventLoop.from_params(LoopParams(64, 8, 4)) as lp:
        assert lp.remained_sqe() == 64


def test_input_pool_starts_full(loop):
    assert loop.input_pool.available == 64


def test_quit_before_loop_returns_immediately(loop):
    loop.quit()
    start = time.monotonic()
    loop.loop()
    assert time.monotonic() - start < 1.0
    assert loop.poll_return_time.valid() is False


def test_run_in_loop_runs_immediately_in_loop_thread(loop):
    ran = []
    loop.run_in_loop(lambda: ran.append(current_tid()))
    assert ran == [current_tid()]


def test_queue_in_loop_from_other_thread(loop):
    ran = []
    seen_from_worker = []

    def worker():
        time.sleep(0.05)
        seen_from_worker.append(loop.is_in_loop_thread())
        loop.run_in_loop(lambda: ran.append(current_tid()))
        loop.queue_in_loop(loop.quit)

    thread = threading.Thread(target=worker)
    thread.start()
    loop.loop()
    thread.join()
    assert ran == [current_tid()]
    assert seen_from_worker == [False]


def test_quit_from_other_thread(loop):
    thread = threading.Thread(target=lambda: (time.sleep(0.05), loop.quit()))
    start = time.monotonic()
    thread.start()
    loop.loop()
    thread.join()
    assert time.monotonic() - start < 3.0
    assert loop.poll_return_time.valid()


def test_io_context_is_abstract():
    with pytest.raises(TypeError):
        IoContext()


# -- I/O operations --------------------------------------------------------


def test_multishot_read_delivers_buffers(loop, pair):
    a, b = pair
    b.sendall(b"one")

    def hook(ctx):
        if len(ctx.events) == 1:
            b.sendall(b"two")

    ctx = Recorder(loop, a.fileno(), stop_after=2, hook=hook)
    loop.submit_read_multishot(ctx)
    loop.loop()
    assert len(ctx.events) == 2
    received = []
    for res, flags in ctx.events:
        assert flags & CQE_F_MORE
        assert flags & CQE_F_BUFFER
        chunk = loop.input_pool.get_chunk(flags >> CQE_BUFFER_SHIFT)
        received.append(bytes(chunk.data[:res]))
    assert received == [b"one", b"two"]
    assert loop.input_pool.available == 62


def test_read_peer_closed_gives_zero(loop, pair):
    a, b = pair
    b.close()
    ctx = Recorder(loop, a.fileno())
    loop.submit_read_multishot(ctx)
    loop.loop()
    assert ctx.events == [(0, 0)]
    assert loop.input_pool.available == 64


def test_read_without_buffers_is_enobufs(loop, pair):
    a, b = pair
    held = [loop.input_pool.acquire() for _ in range(loop.input_pool.available)]
    b.sendall(b"x")
    ctx = Recorder(loop, a.fileno())
    loop.submit_read_multishot(ctx)
    loop.loop()
    assert ctx.events == [(-errno.ENOBUFS, 0)]
    assert len(held) == 64


def test_cancel_read(loop, pair):
    a, b = pair
    ctx = Recorder(loop, a.fileno(), stop_after=100)
    loop.submit_read_multishot(ctx)
    loop.submit_cancel(ctx)
    b.sendall(b"ignored")
    loop.run_after(0.2, loop.quit)
    loop.loop()
    assert ctx.events == [(-errno.ECANCELED, 0)]


def test_gather_write(loop, pair):
    a, b = pair
    ctx = Recorder(loop, a.fileno(), iovecs=[b"ab", memoryview(b"cd")])
    loop.submit_write(ctx)
    loop.loop()
    assert ctx.events == [(4, 0)]
    assert b.recv(16) == b"abcd"


def test_backpressure_defers_submissions():
    a, b = socket.socketpair()
    a.setblocking(False)
    try:
        with EventLoop(8, 4, low_water_mark=4) as lp:
            contexts = [Recorder(lp, a.fileno()) for _ in range(6)]
            for ctx in contexts:
                lp.submit_read_multishot(ctx)
            assert lp.remained_sqe() == 3
            recorded = []
            lp.queue_in_loop(lambda: (recorded.append(lp.remained_sqe()), lp.quit()))
            lp.wake_up()
            lp.loop()
            assert recorded == [7]
            assert all(ctx.events == [] for ctx in contexts)
    finally:
        a.close()
        b.close()


def test_full_submission_queue_raises():
    a, b = socket.socketpair()
    try:
        with EventLoop(2, 4) as lp:
            lp.submit_read_multishot(Recorder(lp, a.fileno()))
            lp.submit_read_multishot(Recorder(lp, a.fileno()))
            assert lp.remained_sqe() == 0
            with pytest.raises(RuntimeError):
                lp.submit_read_multishot(Recorder(lp, a.fileno()))
    finally:
        a.close()
        b.close()