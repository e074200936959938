"""Core semaphore and configuration for pipesem."""

from pipesem.core.config import PipesemConfig, SemaphoreConfig
from pipesem.core.semaphore import MARKER, Semaphore

__all__ = [
    # Configuration
    "PipesemConfig",
    "SemaphoreConfig",
    # Semaphore
    "Semaphore",
    "MARKER",
]
