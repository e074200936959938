"""Cross-process tests for semaphores.

These tests verify:
1. Named FIFO semaphores are shared by unrelated handles in other processes
2. Anonymous semaphores are shared with forked children
3. A single-permit named semaphore gives mutual exclusion across processes
"""

from __future__ import annotations

import asyncio
import os
import time
from pathlib import Path

from pipesem.core.semaphore import Semaphore


def _child_acquire(fifo_path: Path, timeout: float) -> None:
    """Child body: acquire one permit through a fresh handle, then exit."""
    try:
        with Semaphore(initial_value=0, name=fifo_path) as sem:
            acquired = asyncio.run(sem.acquire(timeout))
        os._exit(0 if acquired else 1)
    except Exception:
        os._exit(2)


class TestNamedSemaphoreAcrossProcesses:
    """Tests for FIFO-backed semaphores shared between processes."""

    def test_post_in_parent_acquire_in_child(self, fifo_path: Path) -> None:
        """Should hand a permit posted in the parent to a waiting child."""
        with Semaphore(initial_value=0, name=fifo_path) as sem:
            pid = os.fork()
            if pid == 0:
                _child_acquire(fifo_path, timeout=5.0)

            time.sleep(0.05)
            sem.post()

            _, status = os.waitpid(pid, 0)
            assert os.WEXITSTATUS(status) == 0
            assert sem.value == 0

    def test_child_times_out_without_post(self, fifo_path: Path) -> None:
        """Should leave a child waiting when no permit is posted."""
        with Semaphore(initial_value=0, name=fifo_path):
            pid = os.fork()
            if pid == 0:
                _child_acquire(fifo_path, timeout=0.1)

            _, status = os.waitpid(pid, 0)
            assert os.WEXITSTATUS(status) == 1

    def test_one_permit_per_post(self, fifo_path: Path) -> None:
        """Should satisfy exactly as many children as permits posted."""
        with Semaphore(initial_value=0, name=fifo_path) as sem:
            pids = []
            for _ in range(3):
                pid = os.fork()
                if pid == 0:
                    _child_acquire(fifo_path, timeout=1.0)
                pids.append(pid)

            time.sleep(0.05)
            sem.post()
            sem.post()

            codes = sorted(os.WEXITSTATUS(os.waitpid(pid, 0)[1]) for pid in pids)
            assert codes == [0, 0, 1]
            assert sem.value == 0

    def test_mutual_exclusion(self, fifo_path: Path, tmp_path: Path) -> None:
        """Should never let two holders of a single permit overlap."""
        log_path = tmp_path / "holders.log"

        def holder() -> None:
            try:
                with Semaphore(initial_value=0, name=fifo_path) as sem:
                    if not asyncio.run(sem.acquire(5.0)):
                        os._exit(1)
                    fd = os.open(log_path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o600)
                    os.write(fd, b"enter\n")
                    time.sleep(0.02)
                    os.write(fd, b"exit\n")
                    os.close(fd)
                    sem.post()
                os._exit(0)
            except Exception:
                os._exit(2)

        with Semaphore(initial_value=1, name=fifo_path) as sem:
            pids = []
            for _ in range(4):
                pid = os.fork()
                if pid == 0:
                    holder()
                pids.append(pid)

            for pid in pids:
                _, status = os.waitpid(pid, 0)
                assert os.WEXITSTATUS(status) == 0

            lines = log_path.read_text().split()
            assert lines == ["enter", "exit"] * 4
            assert sem.value == 1


class TestAnonymousSemaphoreAcrossFork:
    """Tests for pipe-backed semaphores inherited by forked children."""

    def test_child_post_visible_in_parent(self) -> None:
        """Should share the pipe with a forked child."""
        with Semaphore(initial_value=0) as sem:
            pid = os.fork()
            if pid == 0:
                try:
                    sem.post()
                    os._exit(0)
                except Exception:
                    os._exit(2)

            _, status = os.waitpid(pid, 0)
            assert os.WEXITSTATUS(status) == 0
            assert sem.try_acquire() is True
            assert sem.try_acquire() is False
