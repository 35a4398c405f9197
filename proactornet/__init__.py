"""Completion-driven TCP networking: event loops, loop-thread pools, coroutine connections and timers."""

__version__ = "0.1.0"

__all__ = [
    "acceptor",
    "chunk_pool",
    "inet_address",
    "input_chain_buffer",
    "logger",
    "loop",
    "loop_thread",
    "read_context",
    "send_queue",
    "sock",
    "tcp_connection",
    "tcp_server",
    "threads",
    "timer",
    "timer_queue",
    "timestamp",
    "write_context",
]