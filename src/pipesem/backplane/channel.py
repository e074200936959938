"""Byte channels backing semaphore values.

A ByteChannel is a pair of non-blocking pipe endpoints. Every byte buffered
in the pipe is one permit, so the kernel's guarantee that a one-byte read
either succeeds or fails as a whole gives an atomic decrement without any
counter of our own.

Variants:
    anonymous: ``os.pipe()``, private to this process and its forks
    named:     a FIFO special file, shared by every process opening the path

Named FIFO Lifecycle:
    mkfifo (if absent)   open read end    open write end     close()
          │                   │                 │               │
          ▼                   ▼                 ▼               ▼
    ┌───────────┐       ┌───────────┐     ┌───────────┐   ┌───────────┐
    │   PATH    │──────▶│  READER   │────▶│   OPEN    │──▶│  CLOSED   │
    └───────────┘       └───────────┘     └───────────┘   └───────────┘

    The read end is opened first so that opening the write end with
    O_NONBLOCK never fails with ENXIO. The FIFO file itself is never
    removed; its lifetime belongs to whoever manages the path.
"""

from __future__ import annotations

import errno
import fcntl
import os
import stat
import struct
import termios
from pathlib import Path

import structlog

log = structlog.get_logger()

# Owner read/write only
DEFAULT_MODE = stat.S_IRUSR | stat.S_IWUSR

OPEN_READER_FLAGS = os.O_RDONLY | os.O_NONBLOCK
OPEN_WRITER_FLAGS = os.O_WRONLY | os.O_NONBLOCK


def ensure_fifo(path: Path, mode: int = DEFAULT_MODE) -> None:
    """Create a FIFO at ``path`` unless one already exists.

    Args:
        path: Filesystem path of the named pipe
        mode: Permission bits used when creating it (subject to umask).
            0 falls back to DEFAULT_MODE.

    Raises:
        FileExistsError: If the path exists but is not a FIFO
        OSError: If the FIFO cannot be created
    """
    mode = mode or DEFAULT_MODE
    try:
        os.mkfifo(path, mode)
    except FileExistsError:
        pass
    except OSError as e:
        raise OSError(e.errno, f"Couldn't create named pipe: {e.strerror}", str(path)) from e
    else:
        log.debug("Created named pipe", path=str(path), mode=oct(mode))
        return

    if not stat.S_ISFIFO(os.stat(path).st_mode):
        raise FileExistsError(errno.EEXIST, "Path exists but is not a named pipe", str(path))


class ByteChannel:
    """Duplex, non-blocking byte stream over a pipe or named FIFO.

    Use the ``anonymous()`` or ``named()`` constructors rather than calling
    the initializer directly.

    Example:
        # Process-local
        channel = ByteChannel.anonymous()
        channel.write(b"\\x01")
        assert channel.try_read_one()

        # Shared between processes
        channel = ByteChannel.named("/tmp/jobs.sem")
    """

    def __init__(self, read_fd: int, write_fd: int, path: Path | None = None) -> None:
        """Wrap an already opened pair of descriptors.

        Both descriptors are switched to non-blocking mode.

        Args:
            read_fd: Descriptor of the read end
            write_fd: Descriptor of the write end
            path: FIFO path for named channels, None for anonymous pipes
        """
        os.set_blocking(read_fd, False)
        os.set_blocking(write_fd, False)
        self._read_fd: int | None = read_fd
        self._write_fd: int | None = write_fd
        self._path = path

    @classmethod
    def anonymous(cls) -> ByteChannel:
        """Create a channel over a new anonymous pipe.

        Raises:
            OSError: If the pipe cannot be created
        """
        read_fd, write_fd = os.pipe()
        log.debug("Opened anonymous pipe", read_fd=read_fd, write_fd=write_fd)
        return cls(read_fd, write_fd)

    @classmethod
    def named(cls, path: Path | str, mode: int = DEFAULT_MODE) -> ByteChannel:
        """Open a channel on a named FIFO, creating the FIFO if needed.

        Args:
            path: Filesystem path of the named pipe
            mode: Permission bits used if the FIFO has to be created

        Raises:
            FileExistsError: If the path exists but is not a FIFO
            OSError: If the FIFO cannot be created or either end opened
        """
        path = Path(path)
        ensure_fifo(path, mode)

        try:
            read_fd = os.open(path, OPEN_READER_FLAGS)
        except OSError as e:
            raise OSError(
                e.errno, f"Couldn't open named pipe for reading: {e.strerror}", str(path)
            ) from e

        try:
            write_fd = os.open(path, OPEN_WRITER_FLAGS)
        except OSError as e:
            os.close(read_fd)
            raise OSError(
                e.errno, f"Couldn't open named pipe for writing: {e.strerror}", str(path)
            ) from e

        log.debug("Opened named pipe", path=str(path), read_fd=read_fd, write_fd=write_fd)
        return cls(read_fd, write_fd, path=path)

    @property
    def path(self) -> Path | None:
        """FIFO path, or None for an anonymous pipe."""
        return self._path

    @property
    def closed(self) -> bool:
        """Whether the endpoints have been closed."""
        return self._read_fd is None

    def fileno(self) -> int:
        """Descriptor of the read end, for readiness polling."""
        if self._read_fd is None:
            raise ValueError("I/O operation on closed channel")
        return self._read_fd

    def write(self, data: bytes) -> None:
        """Write ``data`` to the channel without blocking.

        Raises:
            ValueError: If the channel is closed
            BlockingIOError: If the pipe buffer cannot take all of ``data``
            OSError: If the write fails (e.g. BrokenPipeError)
        """
        if self._write_fd is None:
            raise ValueError("I/O operation on closed channel")

        written = os.write(self._write_fd, data)
        if written != len(data):
            raise BlockingIOError(
                errno.EAGAIN,
                f"Short write to channel ({written} of {len(data)} bytes)",
                written,
            )

    def try_read_one(self) -> bool:
        """Try to consume exactly one byte.

        Returns:
            True if a byte was read, False if none was available
        """
        if self._read_fd is None:
            raise ValueError("I/O operation on closed channel")

        try:
            data = os.read(self._read_fd, 1)
        except BlockingIOError:
            return False
        return len(data) == 1

    def pending(self) -> int:
        """Number of bytes currently buffered in the pipe.

        Only a snapshot: other readers may consume bytes at any time.
        """
        buf = fcntl.ioctl(self.fileno(), termios.FIONREAD, b"\x00" * 4)
        (count,) = struct.unpack("i", buf)
        return int(count)

    def close(self) -> None:
        """Close both endpoints. The FIFO path, if any, is left in place."""
        for fd in (self._read_fd, self._write_fd):
            if fd is not None:
                os.close(fd)
        self._read_fd = None
        self._write_fd = None

    def __enter__(self) -> ByteChannel:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __repr__(self) -> str:
        kind = f"named {str(self._path)!r}" if self._path is not None else "anonymous"
        state = "closed" if self.closed else f"fd={self._read_fd}"
        return f"<ByteChannel {kind} {state}>"
