"""Event loops running in their own threads, and a round-robin pool of them."""

from __future__ import annotations

import threading
from typing import Callable, Optional

from proactornet.loop import EventLoop, LoopParams
from proactornet.threads import Thread

ThreadInitCallback = Callable[[EventLoop], None]


class LoopThread:
    """A thread that builds an :class:`EventLoop` and runs it."""

    def __init__(
        self,
        init_callback: Optional[ThreadInitCallback],
        params: LoopParams,
        name: str = "",
    ) -> None:
        self._init_callback = init_callback
        self._params = params
        self._name = name
        self._thread: Optional[Thread] = None
        self._joined = False
        self._loop: Optional[EventLoop] = None
        self._created: Optional[EventLoop] = None
        self._done = False
        self._error: Optional[BaseException] = None
        self._exiting = False
        self._cond = threading.Condition()

    def _thread_func(self) -> None:
        try:
            loop = EventLoop.from_params(self._params)
        except BaseException as exc:
            with self._cond:
                self._error = exc
                self._done = True
                self._cond.notify_all()
            return
        try:
            if self._init_callback is not None:
                self._init_callback(loop)
            with self._cond:
                if self._exiting:
                    return
                self._loop = self._created = loop
                self._cond.notify_all()
            loop.loop()
        except BaseException as exc:
            with self._cond:
                self._error = exc
            raise
        finally:
            with self._cond:
                self._loop = None
                self._done = True
                self._cond.notify_all()
            loop.close()

    def start_loop(self) -> Optional[EventLoop]:
        """Start the thread and return its loop once it exists."""
        if self._thread is not None:
            raise RuntimeError("the loop thread has already been started")
        self._thread = Thread(self._thread_func, self._name)
        self._thread.start()
        with self._cond:
            self._cond.wait_for(lambda: self._created is not None or self._done)
            if self._created is None and self._error is not None:
                raise self._error
            return self._created

    def stop(self) -> None:
        """Quit the loop and wait for the thread to end."""
        with self._cond:
            self._exiting = True
            if self._loop is not None:
                self._loop.quit()
        if self._thread is not None and not self._joined:
            self._joined = True
            self._thread.join()


class LoopThreadPool:
    """Sub-loops in threads; connections are handed out round-robin.

    Without threads every request is served by the base loop.
    """

    def __init__(self, base_loop: EventLoop, name: str, params: LoopParams) -> None:
        self._base_loop = base_loop
        self.name = name
        self._params = params
        self._started = False
        self._next = 0
        self._num_threads = 0
        self._threads: list[LoopThread] = []
        self._loops: list[EventLoop] = []

    def set_num_threads(self, num_threads: int) -> None:
        """Set the number of sub-loops; only before :meth:`start`."""
        if self._started:
            raise RuntimeError("the thread pool has already started")
        self._num_threads = num_threads

    def start(self, init_callback: Optional[ThreadInitCallback] = None) -> None:
        """Start every sub-loop, running ``init_callback`` in each."""
        self._started = True
        for i in range(self._num_threads):
            thread = LoopThread(init_callback, self._params, f"{self.name}{i}")
            self._threads.append(thread)
            self._loops.append(thread.start_loop())
        if self._num_threads == 0 and init_callback is not None:
            init_callback(self._base_loop)

    @property
    def started(self) -> bool:
        return self._started

    def next_loop(self) -> EventLoop:
        """Return the next sub-loop in turn, or the base loop without threads."""
        loop = self._base_loop
        if self._loops:
            loop = self._loops[self._next]
            self._next = (self._next + 1) % self._num_threads
        return loop

    def all_loops(self) -> list[EventLoop]:
        """All sub-loops, or just the base loop without threads."""
        if self._loops:
            return list(self._loops)
        return [self._base_loop]

    def stop(self) -> None:
        """Quit every sub-loop and wait for the threads."""
        for thread in self._threads:
            thread.stop()