"""Pipe channels and readiness notification.

This package provides the OS-facing layer of pipesem:
- Byte channels over anonymous pipes and named FIFOs
- The Reactor interface and its asyncio implementation
"""

from pipesem.backplane.channel import ByteChannel, ensure_fifo
from pipesem.backplane.reactor import AsyncioReactor, Reactor, Registration

__all__ = [
    "ByteChannel",
    "ensure_fifo",
    "Reactor",
    "AsyncioReactor",
    "Registration",
]
