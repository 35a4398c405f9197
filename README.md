# proactornet

A small TCP networking library built around a completion-driven event loop.
Each connection is served by an `async def` coroutine. The coroutine awaits
incoming data and free space in the output buffer. Loops run one per thread,
and a pool hands new connections to them in round-robin order.

The library uses only the standard library.

## Installation

```
pip install .
```

To run the tests, install the test extra with `pip install .[test]` and then
run `pytest`.

## Building blocks

- `proactornet.loop.EventLoop(ring_size, cqes_size, low_water_mark=0)` is the
  event loop. It can also be built with `EventLoop.from_params(LoopParams(...))`.
  - `loop()` runs the loop until `quit()` is called.
  - `close()` releases the loop's resources. The loop also works as a context
    manager.
  - `run_in_loop` and `queue_in_loop` hand work to the loop from any thread.
  - `run_at`, `run_after` and `run_every` set timers, and `cancel` removes one.
  - Only one loop may exist in a thread at a time. Creating a second loop
    raises `RuntimeError` until the first one is closed.
- `proactornet.loop_thread.LoopThreadPool` holds sub-loops, each running in a
  thread of its own.
  - `next_loop()` returns them in turn. With no threads it returns the base
    loop.
  - `stop()` quits the sub-loops and joins their threads.
- `proactornet.tcp_server.TcpServer` accepts connections on the base loop and
  runs a handler coroutine for each connection on a sub-loop.
  - `set_thread_num()` must be called before `start()`.
  - `connections` returns a snapshot of the live connections.
  - `close()` shuts the server down.
- `proactornet.tcp_connection.TcpConnection` is the object a handler receives.
  Its methods are `prepare_to_read()`, `read(size)`, `peek()`,
  `retrieve(size)` and `send(data)`.
- Lower-level parts:
  - `SendQueue` and `InputChainBuffer`
  - `ChunkPool`, a fixed pool of 64 receive buffers of 4096 bytes each
  - `TimerQueue`, `Timer` and `TimerId`
  - `InetAddress` (IPv4)
  - `Socket`
  - `Timestamp` and `MonotonicTimestamp`
  - `Thread`
  - `Logger`, with `log_info`, `log_error`, `log_fatal` and `log_debug`.
    `log_fatal` raises `SystemExit(-1)`. `log_debug` prints only when
    `Logger.get_instance().debug_enabled` is true.

## An echo server

```python
from proactornet.inet_address import InetAddress
from proactornet.loop import EventLoop, LoopParams
from proactornet.tcp_server import TcpServer


async def echo(conn):
    while True:
        size = await conn.prepare_to_read()
        if size < 0:
            break
        data = conn.read(size)
        if data:
            await conn.send(data)


params = LoopParams(4096, 256, 64)
base_loop = EventLoop.from_params(params)
server = TcpServer(base_loop, InetAddress(9999, "127.0.0.1"), "server1", params, echo)
server.set_thread_num(4)
server.start()
base_loop.loop()
```

`prepare_to_read()` returns one of two things:

- the number of bytes buffered, or
- `-1` once the connection has failed or is closing.

Awaiting `send()` pauses the handler while unsent output is above the
high-water mark. It returns `False` if the connection is closing or a write
failed.

## Timers

```python
from proactornet.loop import EventLoop

with EventLoop(1024, 32) as loop:
    loop.run_after(0.1, loop.quit)
    loop.loop()
```

## What it does not do

- There is no command-line program. The package is a library only.
- There is no client-side connector. Connections come only from a
  `TcpServer` or an `Acceptor`.
- Only IPv4 addresses are supported.
- There is no TLS.
- `TcpServer.connection_callback` and `TcpServer.write_complete_callback` can
  be set but are never called.