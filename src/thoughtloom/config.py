"""Service configuration utilities."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, ClassVar, Literal, cast

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator


def _default_data_dir() -> Path:
    """Return the default directory holding the local store."""

    return Path.cwd() / "thoughtloom_data"


class ServiceSettings(BaseModel):
    """Runtime configuration for the backup core and its HTTP surface."""

    ENV_PREFIX: ClassVar[str] = "THOUGHTLOOM_"
    ENV_FILE: ClassVar[str | None] = ".env"
    ENV_FILE_ENCODING: ClassVar[str] = "utf-8"

    model_config: ClassVar[ConfigDict] = cast(
        ConfigDict,
        {
            "extra": "ignore",
            "env_prefix": ENV_PREFIX,
        },
    )

    data_dir: Path = Field(
        default_factory=_default_data_dir,
        description="Directory holding the local key/value store.",
    )
    remote_dir: Path | None = Field(
        default=None,
        description="Directory used as the remote backup container. Defaults to <data_dir>/remote.",
    )
    container_identifier: str = Field(
        default="iCloud.thoughtloom.notes",
        min_length=1,
        description="Identifier of the remote backup container reported in diagnostics.",
    )
    environment: Literal["production", "development"] = Field(
        default="production",
        description="Remote container environment.",
    )
    backup_retention: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Number of remote backups kept after each new backup.",
    )
    safety_backup_retention: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Number of local pre-restore safety snapshots kept.",
    )
    restore_safety_backup: bool = Field(
        default=True,
        description="Capture the current local state before a restore replaces it.",
    )
    remote_timeout_seconds: float = Field(
        default=10.0,
        ge=0.0,
        description="Timeout applied to each remote call. Zero disables the timeout.",
    )
    remote_retry_attempts: int = Field(
        default=2,
        ge=0,
        le=5,
        description="Retries after transient network failures talking to the remote.",
    )
    remote_backoff_seconds: float = Field(
        default=0.25,
        ge=0.0,
        description="Linear backoff between remote retries.",
    )
    remote_circuit_failure_threshold: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Consecutive remote failures before opening the circuit breaker.",
    )
    remote_circuit_reset_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Seconds before a tripped remote circuit allows new attempts.",
    )
    allow_duplicate_category_names: bool = Field(
        default=False,
        description="Accept snapshots whose category names collide case-insensitively.",
    )

    @field_validator("data_dir")
    @classmethod
    def _ensure_data_dir_is_directory(cls, value: Path) -> Path:
        """Reject a data directory that points at an existing file."""

        if value.exists() and not value.is_dir():
            raise ValueError(f"Data directory is not a directory: {value}")
        return value

    @field_validator("remote_dir")
    @classmethod
    def _validate_remote_dir(cls, value: Path | None, info: ValidationInfo) -> Path | None:
        if value is None:
            return value
        data_dir = info.data.get("data_dir")
        if data_dir is not None and Path(value) == Path(data_dir):
            raise ValueError("remote_dir must differ from data_dir")
        return value

    @staticmethod
    def _parse_env_file(path: Path, encoding: str) -> dict[str, str]:
        """Parse an environment file supporting `export` and quoted values."""

        parsed: dict[str, str] = {}

        for raw_line in path.read_text(encoding=encoding).splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("export "):
                line = line[len("export ") :].strip()

            if "=" not in line:
                continue

            key, raw_value = line.split("=", 1)
            key = key.strip()
            value = raw_value.strip()

            if value and value[0] == value[-1] and value[0] in {'"', "'"}:
                value = value[1:-1]

            parsed[key] = value

        return parsed

    @classmethod
    def from_environment(cls) -> "ServiceSettings":
        """Load settings from environment variables or a `.env` file."""

        env_prefix = cls.ENV_PREFIX
        env_file_name = cls.ENV_FILE
        env_encoding = cls.ENV_FILE_ENCODING

        file_values: dict[str, str] = {}
        if env_file_name:
            env_file_path = Path(env_file_name)
            if not env_file_path.is_absolute():
                env_file_path = Path.cwd() / env_file_path
            if env_file_path.exists():
                file_values = cls._parse_env_file(env_file_path, env_encoding)

        overrides: dict[str, str] = {}
        for field_name in cls.model_fields:
            env_key = f"{env_prefix}{field_name.upper()}"
            if env_key in os.environ:
                overrides[field_name] = os.environ[env_key]
            elif env_key in file_values:
                overrides[field_name] = file_values[env_key]

        typed_overrides = cast(dict[str, Any], overrides)
        return cls(**typed_overrides)

    @property
    def local_store_dir(self) -> Path:
        """Directory of the local key/value store."""

        return self.data_dir / "store"

    @property
    def remote_root(self) -> Path:
        """Directory used by the directory-backed remote container."""

        return self.remote_dir or self.data_dir / "remote"

    @property
    def diagnostics_dir(self) -> Path:
        """Directory receiving JSON diagnostic records."""

        return self.data_dir / "diagnostics"


__all__: list[str] = ["ServiceSettings"]
