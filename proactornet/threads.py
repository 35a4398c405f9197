"""Thread identifiers and a named thread wrapper."""

from __future__ import annotations

import threading
from typing import Callable

_local = threading.local()


def current_tid() -> int:
    """Return the kernel thread id of the calling thread (cached per thread)."""
    tid = getattr(_local, "tid", 0)
    if not tid:
        tid = threading.get_native_id()
        _local.tid = tid
    return tid


class Thread:
    """A named thread whose kernel id is known once :meth:`start` returns."""

    _num_created = 0
    _counter_lock = threading.Lock()

    def __init__(self, func: Callable[[], None], name: str = "") -> None:
        self._func = func
        self._name = name
        self._started = False
        self._joined = False
        self._thread: threading.Thread | None = None
        self._tid = 0
        self._tid_ready = threading.Event()
        self._set_default_name()

    def _set_default_name(self) -> None:
        with Thread._counter_lock:
            Thread._num_created += 1
            num = Thread._num_created
        if not self._name:
            self._name = f"Thread{num}"

    def _run(self) -> None:
        self._tid = current_tid()
        self._tid_ready.set()
        self._func()

    def start(self) -> None:
        """Start the thread and wait until its id is known."""
        self._started = True
        self._tid_ready.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        self._tid_ready.wait()

    def join(self) -> None:
        """Wait for the thread to finish; it must be started and not yet joined."""
        if not self._started:
            raise RuntimeError("Thread.join() called on a thread that has not been started.")
        if self._joined:
            raise RuntimeError("Thread.join() called on a thread that has already been joined.")
        self._joined = True
        assert self._thread is not None
        self._thread.join()

    @property
    def started(self) -> bool:
        return self._started

    @property
    def tid(self) -> int:
        return self._tid

    @property
    def name(self) -> str:
        return self._name

    @classmethod
    def num_created(cls) -> int:
        """Number of Thread objects created so far."""
        with cls._counter_lock:
            return cls._num_created