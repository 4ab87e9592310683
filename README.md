# sonicloop

A small, single-threaded event loop for Unix systems. One `IO` object
(`sonicloop.reactor`) owns a `Poller` (`sonicloop.poller`) built on the
platform's default `selectors` selector, and runs every callback in the thread
that drives it. Files, sockets and timers register one-shot read or write
interest, and their callbacks run when the descriptor is ready.

## Installation

```
pip install .
```

The package has no runtime dependencies. For the tests:

```
pip install ".[test]"
pytest
```

## The event loop

```python
from sonicloop.reactor import IO

ioc = IO()
for i in range(10):
    ioc.post(lambda i=i: print("posted", i))

ioc.run_pending()  # runs until nothing is pending
ioc.close()
```

`post` may be called from any thread; the handler runs in the loop's thread.
`posted()` counts handlers that have not run yet, and `pending()` counts every
operation (registered event, armed timer, posted handler) not yet completed.

Ways to drive the loop:

- `run()` loops forever and returns only by raising an error.
- `run_pending()` returns once no operation is pending.
- `run_one()` blocks until at least one event has been dispatched.
- `run_one_for(duration)` waits at most `duration` (seconds or a `timedelta`),
  which must be at least a millisecond; otherwise `ValueError` is raised.
- `run_warm(busy_cycles, timeout)` busy-polls for `busy_cycles` idle cycles,
  then waits up to `timeout` per cycle until something is processed again.
  `busy_cycles` must be greater than 0.
- `poll_one()` dispatches whatever is ready now and returns the number of
  events processed; `poll()` repeats that until nothing is ready.

When nothing happens before the timeout, `sonicloop.definitions.Timeout` is
raised. Polling a closed loop raises `OSError`, and closing it twice raises
`EOFError`. `IO` is also a context manager that closes the loop on exit.

## Timers

Timers are one-shot. Setting an armed timer again disarms it first.

```python
from datetime import timedelta
from sonicloop.reactor import IO

ioc = IO()
timer = ioc.new_timer()
timer.set(timedelta(milliseconds=100), lambda: print("fired"))
ioc.run_pending()
timer.close()
```

`timer.unset()` disarms it and `timer.armed()` reports whether it is armed.
A repeating timer is built by calling `set` again from the callback.

## Files

```python
import os
from sonicloop.file import open_file
from sonicloop.reactor import IO

ioc = IO()
f = open_file(ioc, "/tmp/example.log", os.O_RDWR | os.O_CREAT | os.O_TRUNC, 0o644)

def on_write(err, n):
    f.seek(0, os.SEEK_SET)
    buf = bytearray(n)
    f.async_read(buf, lambda err, n: print(err, bytes(buf[:n])))

f.async_write(b"hello", on_write)
ioc.run_pending()
f.close()
```

Callbacks are called as `callback(error, count)`, with `error` set to `None`
on success. When the descriptor would block, the operation waits on the loop;
`async_read_all` and `async_write_all` keep going until the whole buffer has
been transferred. `readinto` and `write` are the synchronous forms and raise
`WouldBlock` or `EOFError`. `cancel()` hands pending callbacks a `Cancelled`
error.

## TCP listeners

```python
from sonicloop.listener import listen
from sonicloop.reactor import IO
from sonicloop.sockets import nonblocking

ioc = IO()
ln = listen(ioc, "tcp", "localhost:8080", nonblocking(True))

def on_accept(err, conn):
    ln.async_accept(on_accept)
    if err is None:
        print("accepted", conn.remote_addr)

ln.async_accept(on_accept)
ioc.run()
```

Without `nonblocking(True)` the listener blocks in `accept()`. Accepted
`Connection` objects are non-blocking and have the same read and write methods
as files, plus `local_addr` and `remote_addr`.

Socket options are built with `nonblocking`, `reuse_port`, `reuse_addr`,
`no_delay` and `bind_socket` from `sonicloop.sockets`. That module also
provides `connect`, `connect_timeout`, `listen_udp`, `socket_address`,
`is_nonblocking` and `is_no_delay`.

## Sequencing

`sonicloop.sequencing` has `SimpleProcessor` and `PoolProcessor`. They take
packets that carry sequence numbers and may arrive out of order. Packets that
arrive early are held back until their turn, and late or duplicate packets are
dropped. `PoolProcessor` keeps held packets in byte buffers taken from a
reusable pool.

```python
from sonicloop.sequencing import SimpleProcessor

p = SimpleProcessor()
p.process(1, b"a")
p.process(3, b"c")   # held back
p.process(2, b"b")   # releases 3
print(p.buffered())  # 0
```

## What it does not do

- There is no command-line program; the package is a library only.
- `sonicloop.sockets.connect` and `listen_udp` return plain `socket.socket`
  objects. There is no asynchronous client-connection or datagram class built
  on the loop, and no multicast, TLS or WebSocket support.
- Unix domain sockets are not supported.