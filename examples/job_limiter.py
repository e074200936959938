#!/usr/bin/env python3
"""Limit concurrent jobs across forked worker processes.

This script demonstrates a named semaphore used as a cross-process limiter:
the parent seeds a FIFO with N permits, forks several workers, and each
worker waits for a permit on the event loop before running its job.

Usage:
    python job_limiter.py [fifo_path] [permits] [workers]
"""

from __future__ import annotations

import asyncio
import os
import sys
import tempfile
import time

# Add parent src to path for development
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from pipesem import Semaphore


async def worker(path: str, job: int) -> None:
    """Run one job while holding a permit."""
    with Semaphore(initial_value=0, name=path) as sem:
        await sem.acquire()
        try:
            print(f"[{os.getpid()}] job {job} started at {time.strftime('%X')}")
            await asyncio.sleep(1.0)
        finally:
            sem.post()
            print(f"[{os.getpid()}] job {job} done")


def main() -> int:
    """Fork workers that share one named semaphore."""
    path = sys.argv[1] if len(sys.argv) > 1 else os.path.join(tempfile.gettempdir(), "jobs.sem")
    permits = int(sys.argv[2]) if len(sys.argv) > 2 else 2
    workers = int(sys.argv[3]) if len(sys.argv) > 3 else 6

    # Parent keeps the FIFO open so the permits outlive individual workers
    with Semaphore(initial_value=permits, name=path) as sem:
        pids = []
        for job in range(workers):
            pid = os.fork()
            if pid == 0:
                asyncio.run(worker(path, job))
                os._exit(0)
            pids.append(pid)

        for pid in pids:
            os.waitpid(pid, 0)

        print(f"All jobs finished, {sem.value} permits available")

    os.unlink(path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
