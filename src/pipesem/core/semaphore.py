"""Asynchronous counting semaphore over a byte channel.

The semaphore keeps no counter. Its value is the number of marker bytes
buffered in its ByteChannel: ``post`` writes one byte, and a waiter wins a
permit only when its own one-byte read succeeds. With a named FIFO the
buffered bytes are shared by every process that opened the path, which
makes the semaphore usable as a cross-process lock or limiter.

Waiting never blocks. A waiter arms a callback; the Reactor reports the read
end as readable, the semaphore tries to read one byte, and only a successful
read invokes the callback::

    arm(cb)          readable          read 1 byte        disarm()
      │                 │                  │                 │
      ▼                 ▼                  ▼                 ▼
┌──────────┐      ┌──────────┐      ┌─────────────┐    ┌──────────┐
│ DISARMED │─────▶│  ARMED   │─────▶│ got byte?   │    │ DISARMED │
└──────────┘      └──────────┘      │ yes: cb()   │    └──────────┘
                        ▲           │ no: nothing │
                        └───────────└─────────────┘

An armed semaphore stays armed after a successful acquire and keeps
acquiring on every readiness event until disarmed.

Known races:
    - Several waiters (or processes) may wake for one byte; all but one
      read nothing and are silently ignored.
    - A dispatch the reactor already scheduled can still run after
      ``disarm``. AsyncioReactor cancels queued dispatches, other reactors
      may not.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from pipesem.backplane.channel import DEFAULT_MODE, ByteChannel
from pipesem.backplane.reactor import AsyncioReactor, Reactor, Registration

if TYPE_CHECKING:
    from pipesem.core.config import SemaphoreConfig

log = structlog.get_logger()

# Any non-zero byte works; only the count carries meaning
MARKER = b"\x01"


class Semaphore:
    """Counting semaphore with non-blocking, callback-based waiting.

    Example:
        # In-process limiter
        sem = Semaphore(initial_value=2)
        sem.arm(on_acquire)
        ...
        sem.post()

        # Shared between processes
        sem = Semaphore(name="/tmp/jobs.sem", initial_value=0)
        if await sem.acquire(timeout=5.0):
            try:
                run_job()
            finally:
                sem.post()
    """

    def __init__(
        self,
        initial_value: int = 1,
        name: Path | str | None = None,
        mode: int = DEFAULT_MODE,
        callback: Callable[[], None] | None = None,
        reactor: Reactor | None = None,
    ) -> None:
        """Create the channel and seed it with ``initial_value`` permits.

        Args:
            initial_value: Number of permits available after construction
            name: Named FIFO path to share the semaphore between processes.
                None creates a process-local anonymous pipe.
            mode: Permission bits used if the FIFO has to be created
            callback: If given, arm immediately with this callback
            reactor: Readiness notifier, defaults to an AsyncioReactor

        Raises:
            ValueError: If initial_value is not a non-negative integer
            FileExistsError: If ``name`` exists but is not a FIFO
            OSError: If the pipe or FIFO cannot be created or opened
        """
        if isinstance(initial_value, bool) or not isinstance(initial_value, int):
            raise ValueError(f"initial_value must be an integer: {initial_value!r}")
        if initial_value < 0:
            raise ValueError(f"initial_value must be non-negative: {initial_value}")

        self._reactor: Reactor = reactor if reactor is not None else AsyncioReactor()
        self._registration: Registration | None = None

        if name is not None:
            self._channel = ByteChannel.named(name, mode)
        else:
            self._channel = ByteChannel.anonymous()

        if initial_value:
            try:
                self._channel.write(MARKER * initial_value)
            except BlockingIOError as e:
                # A short write already put some permits into the shared buffer
                self._abort(getattr(e, "characters_written", 0))
                raise
            except OSError:
                self._channel.close()
                raise

        log.debug("Semaphore created", name=self.name, initial_value=initial_value)

        if callback is not None:
            try:
                self.arm(callback)
            except BaseException:
                self._abort(initial_value)
                raise

    @classmethod
    def from_config(
        cls,
        config: SemaphoreConfig,
        callback: Callable[[], None] | None = None,
        reactor: Reactor | None = None,
    ) -> Semaphore:
        """Create a semaphore from a SemaphoreConfig."""
        return cls(
            initial_value=config.initial_value,
            name=config.name,
            mode=config.mode,
            callback=callback,
            reactor=reactor,
        )

    @property
    def name(self) -> str | None:
        """FIFO path for named semaphores, None for anonymous ones."""
        path = self._channel.path
        return str(path) if path is not None else None

    @property
    def closed(self) -> bool:
        """Whether the semaphore has been closed."""
        return self._channel.closed

    @property
    def value(self) -> int:
        """Permits currently available (a snapshot, racy across processes)."""
        self._check_open()
        return self._channel.pending()

    def fileno(self) -> int:
        """Read end descriptor of the underlying channel."""
        return self._channel.fileno()

    def post(self) -> None:
        """Release one permit.

        An armed waiter, here or in another process, may be notified as a
        result; scheduling that notification is up to its reactor.

        Raises:
            RuntimeError: If the semaphore is closed
            OSError: If the write fails
        """
        self._check_open()
        self._channel.write(MARKER)
        log.debug("Semaphore posted", name=self.name)

    def armed(self) -> bool:
        """Whether a waiter is currently registered."""
        return self._registration is not None

    def arm(self, callback: Callable[[], None]) -> None:
        """Invoke ``callback`` each time a permit is acquired.

        Replaces any existing waiter: the old registration is cancelled
        before the new one is made. The waiter stays armed until
        ``disarm`` is called.

        Args:
            callback: Zero-argument callable run after a successful decrement

        Raises:
            RuntimeError: If the semaphore is closed
        """
        self._check_open()
        if self._registration is not None:
            self.disarm()

        channel = self._channel

        def _on_readable() -> None:
            if channel.closed:
                return
            if channel.try_read_one():
                callback()
            # else: another waiter won the byte, or the wakeup was spurious

        self._registration = self._reactor.register_readable(channel.fileno(), _on_readable)
        log.debug("Semaphore armed", name=self.name)

    def disarm(self) -> None:
        """Stop waiting. Safe to call when not armed."""
        registration, self._registration = self._registration, None
        if registration is None:
            return
        self._reactor.cancel(registration)
        log.debug("Semaphore disarmed", name=self.name)

    def try_acquire(self) -> bool:
        """Take a permit if one is available, without waiting.

        Returns:
            True if a permit was taken, False otherwise
        """
        self._check_open()
        return self._channel.try_read_one()

    async def acquire(self, timeout: float | None = None) -> bool:
        """Wait for one permit without blocking the event loop.

        Arms a one-shot waiter and disarms it once the permit is taken, the
        timeout expires, or the calling task is cancelled. A permit taken
        after the caller stopped waiting is posted back.

        Args:
            timeout: Maximum seconds to wait, None for infinite

        Returns:
            True if a permit was acquired, False on timeout

        Raises:
            RuntimeError: If the semaphore is closed or already armed
        """
        if self.armed():
            raise RuntimeError("Semaphore already armed")

        acquired: asyncio.Future[None] = asyncio.get_running_loop().create_future()

        def _on_acquire() -> None:
            self.disarm()
            if acquired.done():
                self.post()
            else:
                acquired.set_result(None)

        self.arm(_on_acquire)
        try:
            await asyncio.wait_for(acquired, timeout)
        except asyncio.TimeoutError:
            if acquired.done() and not acquired.cancelled():
                return True
            log.debug("Semaphore acquire timed out", name=self.name, timeout=timeout)
            return False
        except asyncio.CancelledError:
            if acquired.done() and not acquired.cancelled():
                self.post()
            raise
        finally:
            self.disarm()

        log.debug("Semaphore acquired", name=self.name)
        return True

    def close(self) -> None:
        """Disarm and close the channel. A named FIFO path is left in place."""
        if self._channel.closed:
            return
        self.disarm()
        self._channel.close()
        log.debug("Semaphore closed", name=self.name)

    def _abort(self, seeded: int) -> None:
        """Take back up to ``seeded`` permits and close the channel."""
        taken = 0
        while taken < seeded and self._channel.try_read_one():
            taken += 1
        self._channel.close()
        log.debug("Semaphore construction aborted", name=self.name, seeded=seeded, taken=taken)

    def _check_open(self) -> None:
        if self._channel.closed:
            raise RuntimeError("Semaphore is closed")

    def __enter__(self) -> Semaphore:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __repr__(self) -> str:
        target = self.name if self.name is not None else "anonymous"
        state = "closed" if self.closed else ("armed" if self.armed() else "disarmed")
        return f"<Semaphore {target} {state}>"
