"""Pytest configuration and fixtures."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from pathlib import Path

import pytest

from pipesem.backplane.reactor import Registration


class FakeReactor:
    """Manual reactor for testing.

    Records registrations and only dispatches when a test calls ``fire``.
    """

    def __init__(self) -> None:
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._registrations: dict[int, Registration] = {}
        self.register_calls = 0
        self.cancel_calls = 0

    def register_readable(self, fd: int, on_ready: Callable[[], None]) -> Registration:
        self.register_calls += 1
        registration = Registration(fd=fd)
        self._callbacks[fd] = on_ready
        self._registrations[fd] = registration
        return registration

    def cancel(self, registration: Registration) -> None:
        self.cancel_calls += 1
        registration.active = False
        if self._registrations.get(registration.fd) is registration:
            del self._callbacks[registration.fd]
            del self._registrations[registration.fd]

    def is_registered(self, fd: int) -> bool:
        return fd in self._callbacks

    def fire(self, fd: int) -> None:
        """Simulate a readiness event on ``fd``. No-op if not registered."""
        callback = self._callbacks.get(fd)
        if callback is not None:
            callback()

    def callback_for(self, fd: int) -> Callable[[], None]:
        """Grab the handler so a test can invoke it after cancellation."""
        return self._callbacks[fd]


@pytest.fixture
def reactor() -> FakeReactor:
    """Create a manual reactor."""
    return FakeReactor()


@pytest.fixture
def fifo_path(tmp_path: Path) -> Path:
    """Generate unique FIFO path for test isolation."""
    return tmp_path / f"pipesem_{uuid.uuid4().hex[:8]}.sem"
