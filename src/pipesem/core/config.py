"""Configuration schema and loading for pipesem.

Semaphores can be described in YAML so that an operator can bring up a set
of named, cross-process semaphores with ``pipesem hold --config``::

    version: "0.1"
    semaphores:
      builds:
        name: /run/pipesem/builds.sem
        initial_value: 4
      deploy:
        name: deploy.sem        # relative to this file
        mode: "0660"
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from pipesem.backplane.channel import DEFAULT_MODE


class SemaphoreConfig(BaseModel):
    """Construction options for a single semaphore."""

    name: Path | None = None
    """Named FIFO path. None = anonymous, process-local pipe."""

    mode: int = DEFAULT_MODE
    """Permission bits used when the FIFO has to be created."""

    initial_value: int = Field(default=1, ge=0)
    """Number of permits seeded on construction."""

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_path(cls, v: str | Path | None) -> Path | None:
        if v is None:
            return None
        return Path(v)

    @field_validator("mode", mode="before")
    @classmethod
    def _parse_mode(cls, v: Any) -> Any:
        """Accept octal strings such as "0640" or "0o640"."""
        if isinstance(v, str):
            try:
                return int(v, 8)
            except ValueError as e:
                raise ValueError(f"Expected octal permission bits: {v}") from e
        return v

    @field_validator("mode")
    @classmethod
    def _validate_mode(cls, v: int) -> int:
        if not 0 <= v <= 0o777:
            raise ValueError(f"mode must be within 0..0o777: {oct(v)}")
        return v


class PipesemConfig(BaseModel):
    """Root configuration: a set of named semaphores."""

    version: str = "0.1"
    """Configuration schema version."""

    semaphores: dict[str, SemaphoreConfig] = Field(default_factory=dict)
    """Semaphore configurations keyed by a short label."""

    @model_validator(mode="after")
    def _validate_named(self) -> PipesemConfig:
        """Configured semaphores are shared ones, so each needs a FIFO path."""
        for label, sem in self.semaphores.items():
            if sem.name is None:
                raise ValueError(f"Semaphore '{label}' requires a 'name' (FIFO path)")
        return self

    @classmethod
    def from_yaml(cls, path: Path | str) -> PipesemConfig:
        """Load configuration from YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Parsed configuration

        Raises:
            FileNotFoundError: If file doesn't exist
            pydantic.ValidationError: If configuration invalid
        """
        import yaml

        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f) or {}

        config = cls.model_validate(data)

        # Resolve relative FIFO paths relative to config file
        config_dir = path.parent.resolve()
        for sem in config.semaphores.values():
            if sem.name is not None and not sem.name.is_absolute():
                sem.name = config_dir / sem.name

        return config
