"""
Global configuration for the chain ingestion service.

Holds the environment flag and the validated settings for one ingestion run.
Settings come from an optional YAML file, then command line overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Final

import yaml
from pydantic import Field, ValidationError, field_validator

from chain_ingest.subspecs.rpc.client import DEFAULT_HEIGHT_METHOD, HEIGHT_METHODS
from chain_ingest.subspecs.sync.config import (
    CONNECT_TIMEOUT,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_FAILURE_THRESHOLD,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_PROGRESS_INTERVAL,
    DEFAULT_QUEUE_THRESHOLD,
    DEFAULT_RETRY_DELAY,
    DEFAULT_WORKERS,
    REQUEST_TIMEOUT,
)
from chain_ingest.subspecs.sync.errors import ConfigurationError
from chain_ingest.types import StrictBaseModel

_SUPPORTED_ENVS: list[str] = ["prod", "test"]

CHAIN_INGEST_ENV = os.environ.get("CHAIN_INGEST_ENV", "prod").lower()
"""The environment flag ('prod' or 'test'). Defaults to 'prod'."""

if CHAIN_INGEST_ENV not in _SUPPORTED_ENVS:
    raise ValueError(
        f"Invalid CHAIN_INGEST_ENV environment variable: '{CHAIN_INGEST_ENV}'. "
        f"Supported values: {_SUPPORTED_ENVS}"
    )

_TEST_INTERVAL: Final[float] = 0.01
"""Wait interval used in the test environment so suites never sleep for real."""


def _interval(prod_value: float) -> float:
    """Pick the environment-specific default for a wait interval."""
    return prod_value if CHAIN_INGEST_ENV == "prod" else _TEST_INTERVAL


def default_rpc_url() -> str:
    """
    Build the node endpoint from the deployment environment.

    Reads REMOTENODE_ADDR and REMOTENODE_PORT, defaulting to 127.0.0.1:30003.
    """
    host = os.environ.get("REMOTENODE_ADDR", "127.0.0.1")
    port = os.environ.get("REMOTENODE_PORT", "30003")
    return f"http://{host}:{port}"


DEFAULT_DATABASE: Final = "blocks.db"
"""SQLite file used when no database path is given."""


class SyncConfig(StrictBaseModel):
    """
    Settings for one ingestion run.

    Keys may be written in camelCase (`batchSize`) or snake_case
    (`batch_size`). Unknown keys are rejected.
    """

    rpc_url: str = Field(default_factory=default_rpc_url)
    """JSON-RPC endpoint of the remote node."""

    height_method: str = DEFAULT_HEIGHT_METHOD
    """JSON-RPC method used to query the node height."""

    database: str = DEFAULT_DATABASE
    """Path of the SQLite block store."""

    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    """Heights per job."""

    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, ge=1)
    """Heights admitted per admission step."""

    queue_threshold: int = Field(default=DEFAULT_QUEUE_THRESHOLD, ge=1)
    """Queue depth at or above which admission waits."""

    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    """Executions allowed per logical batch."""

    gap_limit: int | None = Field(default=None, ge=1)
    """Maximum gaps returned per pass. None means unlimited."""

    max_gap_size: int | None = Field(default=None, ge=1)
    """Gaps above this size are skipped; the frontier gap is clamped."""

    max_concurrency: int | None = Field(default=None, ge=1)
    """Concurrent retrievals within one batch. None means unbounded."""

    request_timeout: float = Field(default=REQUEST_TIMEOUT, gt=0)
    """Per-retrieval timeout in seconds."""

    connect_timeout: float = Field(default=CONNECT_TIMEOUT, gt=0)
    """Connection timeout in seconds."""

    poll_interval: float = Field(default=_interval(DEFAULT_POLL_INTERVAL), ge=0)
    """Seconds between queue depth polls while blocked."""

    progress_interval: float = Field(default=_interval(DEFAULT_PROGRESS_INTERVAL), ge=0)
    """Seconds between progress lines while blocked."""

    retry_delay: float = Field(default=_interval(DEFAULT_RETRY_DELAY), ge=0)
    """Seconds before a failed batch runs again."""

    failure_threshold: float = Field(default=DEFAULT_FAILURE_THRESHOLD, gt=0, le=1)
    """Failure ratio above which a batch is retried as a whole."""

    workers: int = Field(default=DEFAULT_WORKERS, ge=1)
    """Concurrent jobs in the in-process work queue."""

    @field_validator("rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str) -> str:
        """Require an http(s) endpoint."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"rpc_url must be an http(s) URL, got {v!r}")
        return v

    @field_validator("height_method")
    @classmethod
    def validate_height_method(cls, v: str) -> str:
        """Only methods the client knows how to interpret are accepted."""
        if v not in HEIGHT_METHODS:
            raise ValueError(f"height_method must be one of {HEIGHT_METHODS}, got {v!r}")
        return v

    @classmethod
    def from_yaml_file(cls, path: Path | str) -> SyncConfig:
        """
        Load configuration from a YAML file.

        An empty file yields the defaults.

        Raises:
            FileNotFoundError: If the file does not exist.
            yaml.YAMLError: If the file is not valid YAML.
            pydantic.ValidationError: If the data fails validation.
        """
        path = Path(path)
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})

    def with_overrides(self, **overrides: Any) -> SyncConfig:
        """
        Apply overrides, ignoring those set to None.

        Raises:
            ConfigurationError: If the merged settings are invalid.
        """
        updates = {key: value for key, value in overrides.items() if value is not None}
        if not updates:
            return self
        try:
            return self.model_validate(self.model_dump() | updates)
        except ValidationError as exc:
            raise ConfigurationError(_describe(exc)) from exc


def load_config(path: Path | str | None = None, **overrides: Any) -> SyncConfig:
    """
    Build the run configuration from a file and overrides.

    Args:
        path: Optional YAML file.
        overrides: Field values taking precedence over the file. None is ignored.

    Raises:
        ConfigurationError: If the file cannot be read or any value is invalid.
    """
    try:
        config = SyncConfig() if path is None else SyncConfig.from_yaml_file(path)
    except ValidationError as exc:
        raise ConfigurationError(_describe(exc)) from exc
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"cannot read configuration file {path}: {exc}") from exc

    return config.with_overrides(**overrides)


def _describe(exc: ValidationError) -> str:
    """Condense a validation error into one line per offending field."""
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc']) or 'config'}: {error['msg']}"
        for error in exc.errors()
    )
