"""A completion-based event loop: one loop per thread.

Operations are submitted for a context object; when they finish the loop sets
``ctx.res`` and ``ctx.flags`` and calls ``ctx.on_completion()``.  ``res`` is a
byte count, a new descriptor or a negative errno.  Multishot reads and accepts
keep running while the completion carries :data:`CQE_F_MORE`.
"""

from __future__ import annotations

import abc
import enum
import errno
import os
import selectors
import socket
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

from proactornet.chunk_pool import ChunkPool, PoolExhausted
from proactornet.logger import log_debug, log_error, log_info
from proactornet.threads import current_tid
from proactornet.timer import TimerId
from proactornet.timer_queue import TimerQueue
from proactornet.timestamp import MonotonicTimestamp, Timestamp, add_time

CQE_F_BUFFER = 1 << 0
CQE_F_MORE = 1 << 1
CQE_BUFFER_SHIFT = 16

DEFAULT_POLL_TIMEOUT = 10.0
_MAX_WAITING_PER_ITERATION = 100

Functor = Callable[[], None]
TimerCallback = Callable[[], None]
ConnectionCallback = Callable[[Any], None]
CloseCallback = Callable[[Any], None]
WriteCompleteCallback = Callable[[Any], None]
HighWaterMarkCallback = Callable[[Any], None]


class IoContext(abc.ABC):
    """Receiver of a completion; ``res`` and ``flags`` are set before the call."""

    res: int = 0
    flags: int = 0

    @abc.abstractmethod
    def on_completion(self) -> None:
        """Handle the completion described by ``res`` and ``flags``."""


@dataclass(frozen=True)
class LoopParams:
    """Arguments used to build an :class:`EventLoop`."""

    ring_size: int
    cqes_size: int
    low_water_mark: int = 0


class SubmitKind(enum.Enum):
    READ_MULTISHOT = enum.auto()
    WRITE = enum.auto()
    ACCEPT_MULTISHOT = enum.auto()


@dataclass(eq=False)
class _Operation:
    ctx: IoContext
    kind: SubmitKind
    fd: int
    buffers: tuple = field(default=())
    active: bool = True

    @property
    def events(self) -> int:
        if self.kind is SubmitKind.WRITE:
            return selectors.EVENT_WRITE
        return selectors.EVENT_READ


_loops_by_thread: dict[int, "EventLoop"] = {}
_registry_lock = threading.Lock()


class EventLoop:
    """Event loop owning a submission queue, a receive pool and timers.

    Reads take buffers from :attr:`input_pool`; the context's ``fd`` is used
    for every operation and a write sends the buffers in ``ctx.iovecs``.
    """

    def __init__(self, ring_size: int, cqes_size: int, low_water_mark: int = 0) -> None:
        if ring_size <= 0 or cqes_size <= 0:
            raise ValueError("ring_size and cqes_size must be positive")
        self._thread_id = current_tid()
        with _registry_lock:
            existing = _loops_by_thread.get(self._thread_id)
            if existing is not None:
                raise RuntimeError(
                    f"another event loop {existing!r} already exists in thread {self._thread_id}"
                )
            _loops_by_thread[self._thread_id] = self
        try:
            self._selector = selectors.DefaultSelector()
            self._wake_r, self._wake_w = socket.socketpair()
        except BaseException:
            with _registry_lock:
                _loops_by_thread.pop(self._thread_id, None)
            raise
        self._wake_r.setblocking(False)
        self._wake_w.setblocking(False)
        self._selector.register(self._wake_r.fileno(), selectors.EVENT_READ)

        self._ring_size = ring_size
        self._cqes_size = cqes_size
        self._low_water_mark = low_water_mark
        self._quit = False
        self._looping = False
        self._closed = False

        self._staged: list[_Operation] = []
        self._fd_ops: dict[int, list[_Operation]] = {}
        self._ops_by_ctx: dict[int, list[_Operation]] = {}
        self._completions: deque[tuple[IoContext, int, int]] = deque()
        self._waiting: deque[tuple[IoContext, SubmitKind]] = deque()

        self._pending: list[Functor] = []
        self._pending_lock = threading.Lock()
        self._calling_pending = False

        self._poll_return_time = Timestamp()
        self._pool = ChunkPool()
        self._timers = TimerQueue(self)
        log_debug("EventLoop created %#x in thread %d", id(self), self._thread_id)

    @classmethod
    def from_params(cls, params: LoopParams) -> "EventLoop":
        """Build a loop from a :class:`LoopParams`."""
        return cls(params.ring_size, params.cqes_size, params.low_water_mark)

    def __repr__(self) -> str:
        return f"<EventLoop {id(self):#x} thread={self._thread_id}>"

    # -- running -----------------------------------------------------------

    def loop(self) -> None:
        """Run until :meth:`quit` is called; returns at once if already quit."""
        if self._quit:
            return
        self._looping = True
        log_info("event loop %#x start looping", id(self))
        try:
            while not self._quit:
                self._submit()
                if self._completions:
                    self._poll(0)
                else:
                    self._poll(self._timeout())
                    self._poll_return_time = Timestamp.now()
                self._timers.handle_expired()
                self._dispatch_completions()
                self._submit_waiting()
                self._do_pending_functors()
        finally:
            self._looping = False
        log_info("event loop %#x stop looping", id(self))

    def quit(self) -> None:
        """Ask the loop to stop after the current iteration."""
        self._quit = True
        if not self.is_in_loop_thread():
            self.wake_up()

    def close(self) -> None:
        """Release the loop's resources and free its thread for a new loop."""
        if self._closed:
            return
        self._closed = True
        with _registry_lock:
            if _loops_by_thread.get(self._thread_id) is self:
                del _loops_by_thread[self._thread_id]
        self._selector.close()
        self._wake_r.close()
        self._wake_w.close()

    def __enter__(self) -> "EventLoop":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -- cross-thread tasks ------------------------------------------------

    def run_in_loop(self, callback: Functor) -> None:
        """Run now if called on the loop's thread, otherwise queue it."""
        if self.is_in_loop_thread():
            callback()
        else:
            self.queue_in_loop(callback)

    def queue_in_loop(self, callback: Functor) -> None:
        """Queue ``callback`` to run at the end of a loop iteration."""
        with self._pending_lock:
            self._pending.append(callback)
        if not self.is_in_loop_thread() or self._calling_pending:
            self.wake_up()

    def wake_up(self) -> None:
        """Interrupt a waiting poll."""
        try:
            self._wake_w.send(b"\x01")
        except BlockingIOError:
            pass  # a wake-up is already pending
        except OSError as exc:
            log_error("EventLoop.wake_up() failed: %s", exc)

    def is_in_loop_thread(self) -> bool:
        return self._thread_id == current_tid()

    # -- submissions -------------------------------------------------------

    def submit_read_multishot(self, ctx: IoContext) -> None:
        """Start a multishot receive on ``ctx.fd`` using pool buffers."""
        self._submit_or_wait(ctx, SubmitKind.READ_MULTISHOT)

    def submit_write(self, ctx: IoContext) -> None:
        """Send ``ctx.iovecs`` to ``ctx.fd`` with one gather write."""
        self._submit_or_wait(ctx, SubmitKind.WRITE)

    def submit_accept_multishot(self, ctx: IoContext) -> None:
        """Start accepting connections on the listening ``ctx.fd``."""
        self._submit_or_wait(ctx, SubmitKind.ACCEPT_MULTISHOT)

    def submit_cancel(self, ctx: IoContext) -> None:
        """Cancel every operation of ``ctx``; each completes with ``-ECANCELED``."""
        self._submit()
        touched = set()
        for op in list(self._ops_by_ctx.get(id(ctx), ())):
            touched.add(op.fd)
            self._finish(op, -errno.ECANCELED, 0)
        for fd in touched:
            self._sync_fd(fd)

    def remained_sqe(self) -> int:
        """Free slots in the submission queue."""
        return self._ring_size - len(self._staged)

    @property
    def input_pool(self) -> ChunkPool:
        return self._pool

    @property
    def poll_return_time(self) -> Timestamp:
        return self._poll_return_time

    # -- timers ------------------------------------------------------------

    def run_at(self, when: MonotonicTimestamp, callback: TimerCallback) -> TimerId:
        """Run ``callback`` once at the monotonic time ``when``."""
        return self._timers.add_timer(callback, when, 0.0)

    def run_after(self, delay: float, callback: TimerCallback) -> TimerId:
        """Run ``callback`` once, ``delay`` seconds from now."""
        return self._timers.add_timer(callback, add_time(MonotonicTimestamp.now(), delay), 0.0)

    def run_every(self, interval: float, callback: TimerCallback) -> TimerId:
        """Run ``callback`` every ``interval`` seconds."""
        return self._timers.add_timer(
            callback, add_time(MonotonicTimestamp.now(), interval), interval
        )

    def cancel(self, timer_id: TimerId) -> None:
        """Cancel a timer."""
        self._timers.cancel_timer(timer_id)

    # -- internals ---------------------------------------------------------

    def _timeout(self) -> float:
        return min(DEFAULT_POLL_TIMEOUT, self._timers.recent_expire_time())

    def _submit_or_wait(self, ctx: IoContext, kind: SubmitKind) -> None:
        if self.remained_sqe() < self._low_water_mark:
            self._waiting.append((ctx, kind))
        else:
            self._stage(ctx, kind)

    def _stage(self, ctx: IoContext, kind: SubmitKind) -> None:
        if self.remained_sqe() <= 0:
            raise RuntimeError("submission queue is full")
        buffers = tuple(getattr(ctx, "iovecs", ())) if kind is SubmitKind.WRITE else ()
        op = _Operation(ctx, kind, ctx.fd, buffers)
        self._staged.append(op)
        self._ops_by_ctx.setdefault(id(ctx), []).append(op)

    def _submit(self) -> None:
        staged, self._staged = self._staged, []
        touched = set()
        for op in staged:
            if op.active:
                self._fd_ops.setdefault(op.fd, []).append(op)
                touched.add(op.fd)
        for fd in touched:
            self._sync_fd(fd)

    def _submit_waiting(self) -> None:
        processed = 0
        while (
            self._waiting
            and self.remained_sqe() > self._low_water_mark
            and processed < _MAX_WAITING_PER_ITERATION
        ):
            ctx, kind = self._waiting.popleft()
            self._stage(ctx, kind)
            processed += 1
        if processed:
            log_debug("Processed %d queued submit requests", processed)

    def _sync_fd(self, fd: int) -> None:
        try:
            self._selector.unregister(fd)
        except (KeyError, ValueError):
            pass
        ops = self._fd_ops.get(fd)
        if not ops:
            self._fd_ops.pop(fd, None)
            return
        mask = 0
        for op in ops:
            mask |= op.events
        try:
            self._selector.register(fd, mask)
        except (OSError, ValueError) as exc:
            err = getattr(exc, "errno", None) or errno.EBADF
            for op in list(ops):
                self._finish(op, -err, 0)
            self._fd_ops.pop(fd, None)

    def _poll(self, timeout: float) -> None:
        wake_fd = self._wake_r.fileno()
        for key, mask in self._selector.select(timeout):
            if key.fd == wake_fd:
                self._drain_wakeup()
            else:
                self._perform(key.fd, mask)

    def _drain_wakeup(self) -> None:
        while True:
            try:
                if not self._wake_r.recv(4096):
                    return
            except (BlockingIOError, InterruptedError):
                return

    def _perform(self, fd: int, mask: int) -> None:
        ops = self._fd_ops.get(fd)
        if not ops:
            self._sync_fd(fd)
            return
        changed = False
        for op in list(ops):
            if op.active and op.events & mask:
                changed |= self._run(op)
        if changed:
            self._sync_fd(fd)

    def _run(self, op: _Operation) -> bool:
        """Try the operation once; return True when it has finished."""
        if op.kind is SubmitKind.READ_MULTISHOT:
            return self._run_read(op)
        if op.kind is SubmitKind.WRITE:
            return self._run_write(op)
        return self._run_accept(op)

    def _run_read(self, op: _Operation) -> bool:
        try:
            chunk = self._pool.acquire()
        except PoolExhausted:
            self._finish(op, -errno.ENOBUFS, 0)
            return True
        try:
            n = os.readv(op.fd, [chunk.writable()])
        except BlockingIOError:
            self._pool.return_chunk(chunk)
            return False
        except OSError as exc:
            self._pool.return_chunk(chunk)
            self._finish(op, -(exc.errno or errno.EIO), 0)
            return True
        if n == 0:
            self._pool.return_chunk(chunk)
            self._finish(op, 0, 0)
            return True
        flags = CQE_F_BUFFER | CQE_F_MORE | (chunk.index << CQE_BUFFER_SHIFT)
        self._completions.append((op.ctx, n, flags))
        return False

    def _run_write(self, op: _Operation) -> bool:
        try:
            n = os.writev(op.fd, op.buffers)
        except BlockingIOError:
            return False
        except OSError as exc:
            self._finish(op, -(exc.errno or errno.EIO), 0)
            return True
        self._finish(op, n, 0)
        return True

    def _run_accept(self, op: _Operation) -> bool:
        try:
            listener = socket.socket(fileno=op.fd)
        except OSError as exc:
            self._finish(op, -(exc.errno or errno.EBADF), 0)
            return True
        try:
            listener.setblocking(False)
            conn, _ = listener.accept()
        except BlockingIOError:
            return False
        except OSError as exc:
            self._finish(op, -(exc.errno or errno.EIO), 0)
            return True
        finally:
            listener.detach()
        conn.setblocking(False)
        self._completions.append((op.ctx, conn.detach(), CQE_F_MORE))
        return False

    def _finish(self, op: _Operation, res: int, flags: int) -> None:
        op.active = False
        fd_ops = self._fd_ops.get(op.fd)
        if fd_ops and op in fd_ops:
            fd_ops.remove(op)
        ctx_ops = self._ops_by_ctx.get(id(op.ctx))
        if ctx_ops is not None:
            if op in ctx_ops:
                ctx_ops.remove(op)
            if not ctx_ops:
                del self._ops_by_ctx[id(op.ctx)]
        self._completions.append((op.ctx, res, flags))

    def _dispatch_completions(self) -> None:
        count = min(self._cqes_size, len(self._completions))
        batch = [self._completions.popleft() for _ in range(count)]
        if batch:
            log_debug("%d events happened", len(batch))
        for ctx, res, flags in batch:
            ctx.res = res
            ctx.flags = flags
            ctx.on_completion()

    def _do_pending_functors(self) -> None:
        self._calling_pending = True
        try:
            with self._pending_lock:
                tasks, self._pending = self._pending, []
            for task in tasks:
                task()
        finally:
            self._calling_pending = False