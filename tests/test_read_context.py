import errno
import socket

import pytest

from proactornet.chunk_pool import ChunkPool
from proactornet.loop import CQE_BUFFER_SHIFT, CQE_F_BUFFER, CQE_F_MORE, EventLoop
from proactornet.read_context import ReadContext, ReadStatus


class FakeConnection:
    def __init__(self):
        self.reads = []
        self.cancels = []
        self.closed = 0

    def submit_read(self, ctx):
        self.reads.append(ctx)
        ctx.status = ReadStatus.READING

    def submit_cancel(self, ctx):
        self.cancels.append(ctx)

    def handle_close(self):
        self.closed += 1


def _fill(pool, index, data):
    pool.get_chunk(index).data[: len(data)] = data


@pytest.fixture
def pool():
    return ChunkPool()


def _reading(ctx):
    holder = FakeConnection()
    ctx.holder = holder
    ctx.status = ReadStatus.READING
    return holder


@pytest.mark.parametrize(
    "res, close, error",
    [
        (0, True, True),
        (-errno.ECONNRESET, True, True),
        (-errno.EPIPE, True, True),
        (-errno.ENOBUFS, False, False),
        (-errno.EAGAIN, False, False),
        (-errno.ECANCELED, False, False),
        (-errno.EBADF, True, True),
        (-errno.EINVAL, True, True),
    ],
)
def test_handle_error(pool, res, close, error):
    ctx = ReadContext(1024, 16, 5, pool)
    ctx.res = res
    assert ctx.handle_error() is close
    assert ctx.is_error is error


def test_data_is_appended(pool):
    ctx = ReadContext(1024, 16, 5, pool)
    holder = _reading(ctx)
    _fill(pool, 3, b"hello")
    ctx.res = 5
    ctx.flags = CQE_F_BUFFER | CQE_F_MORE | (3 << CQE_BUFFER_SHIFT)
    ctx.on_completion()
    assert ctx.input_buffer.remove(5) == b"hello"
    assert holder.cancels == [] and holder.reads == []
    assert ctx.status is ReadStatus.READING


def test_waiting_reader_is_resumed_once(pool):
    ctx = ReadContext(1024, 16, 5, pool)
    _reading(ctx)
    resumed = []
    ctx.read_handle = lambda: resumed.append(True)
    _fill(pool, 0, b"abc")
    ctx.res = 3
    ctx.flags = CQE_F_BUFFER | CQE_F_MORE
    ctx.on_completion()
    assert resumed == [True]
    assert ctx.read_handle is None
    assert not ctx.is_empty()


def test_high_water_mark_cancels(pool):
    ctx = ReadContext(4, 16, 5, pool)
    holder = _reading(ctx)
    _fill(pool, 1, b"hello")
    ctx.res = 5
    ctx.flags = CQE_F_BUFFER | CQE_F_MORE | (1 << CQE_BUFFER_SHIFT)
    ctx.on_completion()
    assert ctx.overloaded()
    assert holder.cancels == [ctx]
    assert ctx.status is ReadStatus.CANCELING

    ctx.res = -errno.ECANCELED
    ctx.flags = 0
    ctx.on_completion()
    assert ctx.status is ReadStatus.STOPPED
    assert ctx.holder is None
    assert holder.closed == 0


def test_chunk_high_water_mark(pool):
    ctx = ReadContext(1 << 20, 1, 5, pool)
    _reading(ctx)
    ctx.input_buffer.append(0, 1)
    assert not ctx.overloaded()
    ctx.input_buffer.append(1, 1)
    assert ctx.overloaded()


def test_recoverable_end_resubmits(pool):
    ctx = ReadContext(1024, 16, 5, pool)
    holder = _reading(ctx)
    ctx.res = -errno.ENOBUFS
    ctx.flags = 0
    ctx.on_completion()
    assert holder.reads == [ctx]
    assert holder.closed == 0
    assert ctx.is_error is False


def test_peer_close_closes_connection(pool):
    ctx = ReadContext(1024, 16, 5, pool)
    holder = _reading(ctx)
    resumed = []
    ctx.read_handle = lambda: resumed.append(True)
    ctx.res = 0
    ctx.flags = 0
    ctx.on_completion()
    assert resumed == [True]
    assert holder.closed == 1
    assert ctx.holder is None
    assert ctx.status is ReadStatus.STOPPED
    assert ctx.is_error


def test_receive_through_loop():
    a, b = socket.socketpair()
    loop = EventLoop(256, 32)
    try:
        ctx = ReadContext(65536, 16, a.fileno(), loop.input_pool)

        class LoopConnection(FakeConnection):
            def submit_read(self, c):
                loop.submit_read_multishot(c)
                c.status = ReadStatus.READING

            def submit_cancel(self, c):
                loop.submit_cancel(c)

        holder = LoopConnection()
        ctx.holder = holder
        holder.submit_read(ctx)
        ctx.read_handle = loop.quit
        loop.run_after(2.0, loop.quit)
        b.send(b"ping")
        loop.loop()
        assert ctx.input_buffer.remove_all() == b"ping"
        assert ctx.is_empty()
    finally:
        loop.close()
        a.close()
        b.close()