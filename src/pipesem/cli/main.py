"""Command-line interface for pipesem.

Operates named (FIFO-backed) semaphores from a shell. Bytes in a FIFO only
survive while some process keeps it open, so a typical setup runs
``pipesem hold`` in the background and uses the other commands against the
same path::

    pipesem hold /tmp/builds.sem -n 4 &
    pipesem run /tmp/builds.sem -- make -j8
"""

from __future__ import annotations

import asyncio
import signal
import subprocess
from collections.abc import MutableMapping
from pathlib import Path
from typing import Any

import click
import structlog

from pipesem import __version__
from pipesem.core.config import PipesemConfig, SemaphoreConfig
from pipesem.core.semaphore import Semaphore

log = structlog.get_logger()


def _configure_logging(*, verbose: bool = False, quiet: bool = False) -> None:
    """Configure structlog with appropriate log level filtering."""
    import logging

    if quiet:
        min_level = logging.WARNING
    elif verbose:
        min_level = logging.DEBUG
    else:
        min_level = logging.INFO

    def _filter_by_level(
        _logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        if getattr(logging, method_name.upper(), 0) < min_level:
            raise structlog.DropEvent
        return event_dict

    structlog.configure(
        processors=[
            _filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
    )


def _open_existing(path: Path) -> Semaphore:
    """Attach to an existing FIFO without adding permits."""
    try:
        return Semaphore(initial_value=0, name=path)
    except OSError as e:
        log.error("Failed to open semaphore", path=str(path), error=str(e))
        raise SystemExit(1) from e


verbose_option = click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
quiet_option = click.option("--quiet", "-q", is_flag=True, help="Only report warnings and errors")
timeout_option = click.option(
    "--timeout",
    "-t",
    type=float,
    default=None,
    help="Seconds to wait for a permit (default: wait forever)",
)


@click.group()
@click.version_option(version=__version__, prog_name="pipesem")
def cli() -> None:
    """pipesem - Asynchronous pipe-backed semaphores.

    Create, hold, post and acquire named semaphores shared between processes.
    """


@cli.command()
@click.argument("path", required=False, type=click.Path(path_type=Path))
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="YAML file describing the semaphores to hold",
)
@click.option("--initial", "-n", type=int, default=1, show_default=True, help="Initial permits")
@click.option(
    "--mode", "-m", default="0600", show_default=True, help="FIFO permission bits (octal)"
)
@verbose_option
@quiet_option
def hold(
    path: Path | None,
    config_path: Path | None,
    initial: int,
    mode: str,
    verbose: bool,
    quiet: bool,
) -> None:
    """Create semaphores and keep them open until interrupted.

    PATH: FIFO path of a single semaphore (or use --config)
    """
    _configure_logging(verbose=verbose, quiet=quiet)

    if (path is None) == (config_path is None):
        log.error("Give exactly one of PATH or --config")
        raise SystemExit(2)

    try:
        if config_path is not None:
            configs = list(PipesemConfig.from_yaml(config_path).semaphores.values())
        else:
            configs = [SemaphoreConfig(name=path, mode=mode, initial_value=initial)]
    except Exception as e:
        log.error("Failed to load configuration", error=str(e))
        raise SystemExit(1) from e

    semaphores: list[Semaphore] = []
    try:
        for config in configs:
            sem = Semaphore.from_config(config)
            semaphores.append(sem)
            log.info("Holding semaphore", path=sem.name, initial_value=config.initial_value)

        async def main() -> None:
            shutdown_event = asyncio.Event()
            loop = asyncio.get_running_loop()

            def handle_signal(signum: int, _frame: object) -> None:
                log.info("Received signal, releasing semaphores", signal=signum)
                loop.call_soon_threadsafe(shutdown_event.set)

            signal.signal(signal.SIGINT, handle_signal)
            signal.signal(signal.SIGTERM, handle_signal)

            await shutdown_event.wait()

        asyncio.run(main())
    except KeyboardInterrupt:
        log.info("Interrupted by user")
    except OSError as e:
        log.error("Failed to open semaphore", error=str(e))
        raise SystemExit(1) from e
    finally:
        for sem in semaphores:
            sem.close()


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option("--count", "-c", type=click.IntRange(min=1), default=1, help="Permits to release")
@verbose_option
@quiet_option
def post(path: Path, count: int, verbose: bool, quiet: bool) -> None:
    """Release permits on a semaphore.

    PATH: FIFO path of the semaphore
    """
    _configure_logging(verbose=verbose, quiet=quiet)

    with _open_existing(path) as sem:
        try:
            for _ in range(count):
                sem.post()
        except OSError as e:
            log.error("Failed to post", path=str(path), error=str(e))
            raise SystemExit(1) from e
        log.info("Posted", path=str(path), count=count)


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@timeout_option
@verbose_option
@quiet_option
def acquire(path: Path, timeout: float | None, verbose: bool, quiet: bool) -> None:
    """Take one permit, waiting until one is available.

    PATH: FIFO path of the semaphore

    Exits with code 0 once a permit is taken, 1 on timeout.
    """
    _configure_logging(verbose=verbose, quiet=quiet)

    with _open_existing(path) as sem:
        if not asyncio.run(sem.acquire(timeout)):
            log.error("Timed out waiting for permit", path=str(path), timeout=timeout)
            raise SystemExit(1)
        log.info("Acquired", path=str(path))


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@timeout_option
@verbose_option
@quiet_option
def run(
    path: Path,
    command: tuple[str, ...],
    timeout: float | None,
    verbose: bool,
    quiet: bool,
) -> None:
    """Run a command while holding one permit.

    PATH: FIFO path of the semaphore
    COMMAND: Command to run (put it after "--")

    Exits with the command's status, or 1 if no permit was taken in time.
    """
    _configure_logging(verbose=verbose, quiet=quiet)

    with _open_existing(path) as sem:
        if not asyncio.run(sem.acquire(timeout)):
            log.error("Timed out waiting for permit", path=str(path), timeout=timeout)
            raise SystemExit(1)

        log.info("Running command", path=str(path), command=" ".join(command))
        try:
            result = subprocess.run(list(command), check=False)
        except OSError as e:
            log.error("Failed to run command", command=command[0], error=str(e))
            raise SystemExit(1) from e
        finally:
            sem.post()

    if result.returncode != 0:
        log.warning("Command failed", returncode=result.returncode)
    raise SystemExit(result.returncode)


@cli.command()
@click.argument("config_path", type=click.Path(exists=True, path_type=Path))
def validate(config_path: Path) -> None:
    """Validate configuration file.

    CONFIG_PATH: Path to YAML configuration file

    Exits with code 0 if valid, 1 if invalid.
    """
    try:
        config = PipesemConfig.from_yaml(config_path)
        log.info("Configuration valid", semaphores=len(config.semaphores))

        for label, sem in config.semaphores.items():
            click.echo(
                f"  Semaphore: {label} ({sem.name}, "
                f"initial={sem.initial_value}, mode={oct(sem.mode)})"
            )

    except Exception as e:
        log.error("Configuration invalid", error=str(e))
        raise SystemExit(1) from e


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
