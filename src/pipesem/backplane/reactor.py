"""Readiness notification for semaphore waiters.

Semaphores never poll descriptors themselves. They hand a descriptor and a
callback to a Reactor and later cancel that registration. Any multiplexing
mechanism can sit behind this interface; AsyncioReactor is the one used by
default and binds to an asyncio event loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import structlog

log = structlog.get_logger()


@dataclass
class Registration:
    """Handle for one readiness subscription."""

    fd: int
    loop: asyncio.AbstractEventLoop | None = None
    active: bool = True


@runtime_checkable
class Reactor(Protocol):
    """Readiness notification interface consumed by Semaphore."""

    def register_readable(self, fd: int, on_ready: Callable[[], None]) -> Registration: ...
    def cancel(self, registration: Registration) -> None: ...


class AsyncioReactor:
    """Reactor backed by ``loop.add_reader`` / ``loop.remove_reader``.

    An event loop allows one reader callback per descriptor, so a second
    registration on the same descriptor replaces the first. Semaphores only
    register on their own read end and cancel before re-registering.

    Example:
        >>> reactor = AsyncioReactor()
        >>> reg = reactor.register_readable(fd, on_ready)
        >>> reactor.cancel(reg)
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Initialize the reactor.

        Args:
            loop: Event loop to register with. None uses the loop running
                at registration time.
        """
        self._loop = loop

    def register_readable(self, fd: int, on_ready: Callable[[], None]) -> Registration:
        """Invoke ``on_ready`` every time ``fd`` becomes readable.

        Raises:
            RuntimeError: If no loop was given and none is running
        """
        loop = self._loop if self._loop is not None else asyncio.get_running_loop()
        loop.add_reader(fd, on_ready)
        return Registration(fd=fd, loop=loop)

    def cancel(self, registration: Registration) -> None:
        """Remove a registration. Safe to call more than once.

        Removing the reader also cancels a callback the loop has already
        queued for this descriptor.
        """
        if not registration.active:
            return
        registration.active = False

        loop = registration.loop
        if loop is None or loop.is_closed():
            log.debug("Event loop gone, nothing to cancel", fd=registration.fd)
            return
        loop.remove_reader(registration.fd)
