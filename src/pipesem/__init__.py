"""pipesem - Asynchronous pipe-backed semaphores.

Counting semaphores whose value lives in a pipe: one buffered byte per
permit. Waiters never block; they arm a callback on an event loop and are
notified when they win a permit. Named FIFOs share a semaphore between
unrelated processes without any coordinating server.
"""

__version__ = "0.1.0"

# Backplane (channels and readiness notification)
from pipesem.backplane.channel import ByteChannel
from pipesem.backplane.reactor import AsyncioReactor, Reactor, Registration

# Configuration
from pipesem.core.config import PipesemConfig, SemaphoreConfig

# Semaphore
from pipesem.core.semaphore import Semaphore

__all__ = [
    # Version
    "__version__",
    # Semaphore
    "Semaphore",
    # Configuration
    "PipesemConfig",
    "SemaphoreConfig",
    # Backplane
    "ByteChannel",
    "Reactor",
    "AsyncioReactor",
    "Registration",
]
