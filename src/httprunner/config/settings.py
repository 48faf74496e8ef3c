"""Configuration management for httprunner.

Loads settings from a YAML configuration file with environment variable
overrides (``HTTPRUNNER_`` prefix, ``__`` for nested sections). Supports
.env files.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from httprunner.utils.timefmt import parse_duration

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/httprunner.yaml")


class ServerConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)
    tls: bool = Field(default=True, description="Serve HTTPS with cert_file/key_file")
    cert_file: Path = Field(default_factory=lambda: Path.home() / "keys" / "cert.pem")
    key_file: Path = Field(default_factory=lambda: Path.home() / "keys" / "key.pem")
    userpass: SecretStr = Field(
        default=SecretStr(""),
        description="Optional username:password protection",
    )

    @field_validator("cert_file", "key_file")
    @classmethod
    def _expand_home(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("userpass")
    @classmethod
    def _check_userpass(cls, value: SecretStr) -> SecretStr:
        raw = value.get_secret_value()
        if raw:
            user, sep, _ = raw.partition(":")
            if not sep or not user:
                raise ValueError("userpass must look like username:password")
        return value


class RunnerConfig(BaseModel):
    command: str = Field(default="", description="The command to run")
    rate: float = Field(
        default=1.0,
        ge=0,
        description="At most one process per this many seconds; 0 for no limit",
    )
    capture_limit: int = Field(default=1 << 20, gt=0)
    stderr_limit: int = Field(default=64 << 10, gt=0)
    max_duration: float = Field(default=1.0, gt=0)
    idle_timeout: float = Field(default=0.2, gt=0)
    exit_delay: float = Field(default=1.0, ge=0)
    echo_output: bool = Field(default=True)

    @field_validator("rate", "max_duration", "idle_timeout", "exit_delay", mode="before")
    @classmethod
    def _parse_durations(cls, value: object) -> object:
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            return parse_duration(value)
        return value

    @property
    def argv(self) -> list[str]:
        return self.command.split()


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for httprunner.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "HTTPRUNNER_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    server: ServerConfig = Field(default_factory=ServerConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML values arrive as init kwargs; the environment wins over them
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    return Settings(**yaml_data)
