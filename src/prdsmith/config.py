"""Configuration management for prdsmith.

Defaults live in ``AppConfig``. A project can override them in
``prdsmith/config.yaml``, which is created with the defaults on first run.
Keys are camelCase on disk, like the interview state file.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .interview.errors import RetryPolicy
from .interview.state import STATE_DIRNAME, ProviderName

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"
CONFIG_HEADER = "# prdsmith configuration\n"


class ConfigError(ValueError):
    pass


class ConfigModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class RetryConfig(ConfigModel):
    """Backoff settings for transient provider failures."""
    max_attempts: StrictInt = Field(3, ge=1)
    backoff_ms: StrictInt = Field(1000, ge=0)
    max_backoff_ms: StrictInt = Field(30000, ge=0)
    jitter_ms: StrictInt = Field(250, ge=0)

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            backoff_ms=self.backoff_ms,
            max_backoff_ms=self.max_backoff_ms,
            jitter_ms=self.jitter_ms,
        )


class AppConfig(ConfigModel):
    """Main configuration object."""
    default_provider: ProviderName = ProviderName.CLAUDE
    output_directory: StrictStr = "./prdsmith"
    response_timeout: float = Field(300.0, gt=0)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @field_validator("output_directory")
    @classmethod
    def _directory_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("outputDirectory must be a non-empty string")
        return value

    @field_validator("response_timeout", mode="before")
    @classmethod
    def _timeout_is_number(cls, value: Any) -> Any:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("responseTimeout must be a number of seconds")
        return value

    @field_validator("retry", mode="before")
    @classmethod
    def _empty_retry_means_defaults(cls, value: Any) -> Any:
        return {} if value is None else value

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def config_path(base_dir: Path) -> Path:
    return base_dir / STATE_DIRNAME / CONFIG_FILENAME


def parse_config(data: Optional[Dict[str, Any]]) -> AppConfig:
    """Build an ``AppConfig`` from a parsed YAML document.

    Raises:
        ConfigError: naming the first offending setting, e.g.
            ``retry.maxAttempts: Input should be greater than or equal to 1``.
    """
    if data is None:
        return AppConfig()
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a mapping")
    try:
        return AppConfig.model_validate(data)
    except ValidationError as exc:
        problems = [
            f"{'.'.join(str(part) for part in item['loc']) or 'root'}: {item['msg']}" for item in exc.errors()
        ]
        raise ConfigError("; ".join(problems)) from None


def load_config(base_dir: Path | str = ".", *, create: bool = True) -> AppConfig:
    """Load ``prdsmith/config.yaml`` under ``base_dir``.

    Args:
        base_dir: Project directory.
        create: Write a default config file when none exists.

    Returns:
        AppConfig with file values layered over the defaults.
    """
    path = config_path(Path(base_dir))
    if not path.is_file():
        config = AppConfig()
        if create:
            save_config(config, Path(base_dir))
        return config

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    return parse_config(data)


def save_config(config: AppConfig, base_dir: Path | str = ".") -> Path:
    path = config_path(Path(base_dir))
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(CONFIG_HEADER + yaml.safe_dump(config.to_document(), sort_keys=False), encoding="utf-8")
    logger.debug("Wrote default configuration to %s", path)
    return path
