"""Settings for jobnet-runner.

Values come from environment variables (and ``.env``), optionally overlaid
on a YAML file named by ``JOBNET_CONFIG_YAML``. Environment variables always
take precedence over YAML values.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENVIRONMENTS = ("development", "test", "production")


class DatabaseSettings(BaseModel):
    host: str = "localhost"
    port: int = 5432
    name: str = "jobnet"
    user: str = "postgres"
    password: str = "postgres"
    pool_size: int = Field(default=5, ge=1)
    database_url: Optional[str] = None

    @property
    def url(self) -> str:
        if self.database_url:
            return self.database_url
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"


class QueueSettings(BaseModel):
    backend: Literal["file", "database"] = "file"
    dir: Optional[Path] = None
    enable_lock: bool = True


class ExecutorSettings(BaseModel):
    isolation: Literal["inline", "process"] = "process"
    max_parallel_jobs: int = Field(default=1, ge=1)
    abort_grace_seconds: float = Field(default=30.0, ge=0)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: Literal["console", "json"] = "console"
    file: Optional[Path] = None

    @field_validator("level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="JOBNET_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = "development"
    home: Optional[Path] = None
    config_yaml: Optional[Path] = None

    database: DatabaseSettings = DatabaseSettings()
    queue: QueueSettings = QueueSettings()
    executor: ExecutorSettings = ExecutorSettings()
    logging: LoggingSettings = LoggingSettings()

    @field_validator("environment")
    @classmethod
    def _check_environment(cls, v: str) -> str:
        if v not in ENVIRONMENTS:
            raise ValueError(f"ENVIRONMENT must be one of {', '.join(ENVIRONMENTS)}: {v}")
        return v

    @property
    def yaml_path(self) -> Optional[Path]:
        """``config_yaml`` if set, else ``<home>/config/<environment>.yaml``."""
        if self.config_yaml:
            return Path(self.config_yaml)
        if self.home:
            return Path(self.home) / "config" / f"{self.environment}.yaml"
        return None


def _load_yaml(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"config file must be a mapping: {path}")
    return data


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(environment: Optional[str] = None) -> Settings:
    """Load Settings from env (.env) and optionally merge a YAML file underneath.

    ``environment`` overrides ``JOBNET_ENVIRONMENT`` and so selects which
    ``config/<environment>.yaml`` under the jobnet home is read.
    """
    overrides = {"environment": environment} if environment else {}
    base = Settings(**overrides)  # loads from env/.env

    yaml_path = base.yaml_path
    if yaml_path and yaml_path.exists():
        data = _load_yaml(yaml_path)
        env_values = base.model_dump(exclude_unset=True)
        return Settings(**_deep_merge(data, env_values))

    return base


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reload_settings(environment: Optional[str] = None) -> Settings:
    global _settings
    _settings = load_settings(environment)
    return _settings
