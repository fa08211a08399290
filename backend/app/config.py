"""Configuration loader for the AbegHelp backend."""
from __future__ import annotations

import logging
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

LOGGER = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = REPO_ROOT / ".env"

_DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhdw]?)\s*$", re.IGNORECASE)
_DURATION_UNITS = {
    "": "seconds",
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
    "w": "weeks",
}

# Environment variable -> (section, key). The first variable found wins.
ENVIRONMENT_OVERRIDES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("APP_NAME", ("app", "name")),
    ("PORT", ("app", "port")),
    ("APP_ENV", ("app", "env")),
    ("NODE_ENV", ("app", "env")),
    ("APP_CLIENT", ("app", "client")),
    ("DATABASE_URL", ("db", "url")),
    ("MONGO_URL", ("db", "url")),
    ("REDIS_URL", ("redis", "url")),
    ("REDIS_PORT", ("redis", "port")),
    ("REDIS_PASSWORD", ("redis", "password")),
    ("CACHE_REDIS_URL", ("cache_redis", "url")),
    ("RESEND_API_KEY", ("email", "api_key")),
    ("ACCESS_JWT_KEY", ("jwt", "access_key")),
    ("REFRESH_JWT_KEY", ("jwt", "refresh_key")),
    ("ACCESS_JWT_EXPIRES_IN", ("jwt_expires_in", "access")),
    ("REFRESH_JWT_EXPIRES_IN", ("jwt_expires_in", "refresh")),
    ("FRONTEND_URL", ("frontend_url",)),
)


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


def parse_duration(value: Union[str, int, float, timedelta]) -> timedelta:
    """Convert a duration such as ``"15m"``, ``"7d"`` or ``3600`` into a timedelta.

    Bare numbers are interpreted as seconds.
    """

    if isinstance(value, timedelta):
        duration = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        duration = timedelta(seconds=value)
    elif isinstance(value, str):
        match = _DURATION_PATTERN.match(value)
        if match is None:
            raise ValueError(f"Invalid duration: {value!r}")
        amount, unit = match.groups()
        duration = timedelta(**{_DURATION_UNITS[unit.lower()]: int(amount)})
    else:
        raise ValueError(f"Invalid duration: {value!r}")
    if duration <= timedelta(0):
        raise ValueError("Duration must be positive")
    return duration


class _FrozenModel(BaseModel):
    """Base model enforcing immutability for config sections."""

    model_config = ConfigDict(frozen=True)


class AppSettings(_FrozenModel):
    """Process-level application settings."""

    name: Optional[str] = None
    port: int = Field(..., ge=1, le=65535)
    env: Optional[str] = None
    client: str = Field(..., min_length=1)


class DatabaseConfig(_FrozenModel):
    """Database connection settings."""

    url: str = Field(..., min_length=1)


class RedisConfig(_FrozenModel):
    """Queue broker connection settings."""

    url: str = Field(..., min_length=1)
    port: int = Field(..., ge=1, le=65535)
    password: str = Field(..., min_length=1)


class CacheRedisConfig(_FrozenModel):
    """Cache connection settings."""

    url: str = Field(..., min_length=1)


class EmailConfig(_FrozenModel):
    """Credentials for the transactional email provider."""

    api_key: str = Field(..., min_length=1)
    base_url: str = Field("https://api.resend.com", min_length=1)
    timeout_seconds: float = Field(10.0, gt=0)


class JWTConfig(_FrozenModel):
    """Signing secrets for access and refresh tokens."""

    access_key: str = Field(..., min_length=1)
    refresh_key: str = Field(..., min_length=1)
    algorithm: str = Field("HS256", min_length=1)


class JWTExpiryConfig(_FrozenModel):
    """Lifetimes of issued tokens."""

    access: timedelta
    refresh: timedelta

    @field_validator("access", "refresh", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> timedelta:
        return parse_duration(value)


class AppConfig(_FrozenModel):
    """Top-level configuration shared by the user entity and email dispatcher."""

    app: AppSettings
    db: DatabaseConfig
    redis: RedisConfig
    cache_redis: CacheRedisConfig
    email: EmailConfig
    jwt: JWTConfig
    jwt_expires_in: JWTExpiryConfig
    frontend_url: str = Field(..., min_length=1)

    @staticmethod
    def default_path() -> Path:
        """Return the default location of the configuration file.

        Returns:
            Path: Absolute path to config.yaml at the repository root.
        """
        return REPO_ROOT / "config.yaml"


def _env_file_path() -> Optional[Path]:
    """Return the ``.env`` file to read, honouring ``ABEGHELP_ENV_FILE``."""

    override = os.getenv("ABEGHELP_ENV_FILE")
    path = Path(override).expanduser() if override else DEFAULT_ENV_FILE
    if path.is_file():
        return path
    if override:
        LOGGER.warning("Environment file %s not found", path)
    return None


def _parse_env_line(line: str) -> Optional[Tuple[str, str]]:
    """Split one ``KEY=value`` line, or return ``None`` for blanks and comments."""

    line = line.strip()
    if line.startswith("export "):
        line = line[len("export "):]
    key, sep, value = line.partition("=")
    key = key.strip()
    if not sep or not key or key.startswith("#"):
        return None
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return key, value[1:-1]
    return key, value.split("#", 1)[0].rstrip()


def _read_env_file(path: Path) -> Dict[str, str]:
    """Return the variables defined in ``path``; unreadable files yield nothing."""

    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        LOGGER.warning("Cannot read environment file %s: %s", path, exc)
        return {}
    return dict(entry for entry in map(_parse_env_line, lines) if entry is not None)


def _export_env_file(path: Path) -> None:
    """Copy ``.env`` values into ``os.environ`` without replacing set variables."""

    for key, value in _read_env_file(path).items():
        if not os.environ.get(key, "").strip():
            os.environ[key] = value


def _apply_environment_overrides(raw_content: Dict[str, Any]) -> Dict[str, Any]:
    """Merge environment-based overrides into the raw configuration mapping.

    Args:
        raw_content: Parsed YAML configuration prior to Pydantic validation.

    Returns:
        Dict[str, Any]: Configuration mapping with environment overrides applied.
    """

    env_file = _env_file_path()
    if env_file is not None:
        _export_env_file(env_file)

    applied: set[Tuple[str, ...]] = set()
    for variable, location in ENVIRONMENT_OVERRIDES:
        if location in applied:
            continue
        raw = os.getenv(variable)
        if raw is None or raw.strip() == "":
            continue
        target = raw_content
        for key in location[:-1]:
            section = target.get(key)
            if not isinstance(section, dict):
                section = {}
                target[key] = section
            target = section
        target[location[-1]] = raw.strip()
        applied.add(location)
    if applied:
        LOGGER.info("Configuration overridden from environment (count=%d)", len(applied))
    return raw_content


def _read_yaml(path: Path) -> Dict[str, Any]:
    """Read YAML content from disk.

    A missing file yields an empty mapping so deployments may configure the
    process from the environment alone.

    Raises:
        ConfigError: If the file cannot be parsed.
    """
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError:
        LOGGER.warning("Configuration file missing at %s; using environment only", path)
        return {}
    except yaml.YAMLError as exc:
        LOGGER.error("Invalid YAML syntax in %s", path)
        raise ConfigError("Invalid YAML syntax") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        LOGGER.error("Configuration root must be a mapping: %s", path)
        raise ConfigError("Configuration root must be a mapping")
    return data


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load application configuration from YAML and the process environment.

    Called once at process start; the returned object is passed explicitly to
    the components that need it.

    Args:
        path: Optional override path to the YAML file.

    Returns:
        AppConfig: Parsed configuration object.

    Raises:
        ConfigError: If a required setting is missing or invalid.
    """
    config_path = path or AppConfig.default_path()
    raw_content = _read_yaml(config_path)
    raw_content = _apply_environment_overrides(raw_content)
    try:
        return AppConfig(**raw_content)
    except ValidationError as exc:
        LOGGER.error("Invalid configuration values: %s", exc)
        raise ConfigError("Configuration validation failed") from exc


__all__ = [
    "AppConfig",
    "AppSettings",
    "CacheRedisConfig",
    "ConfigError",
    "DatabaseConfig",
    "EmailConfig",
    "JWTConfig",
    "JWTExpiryConfig",
    "RedisConfig",
    "load_config",
    "parse_duration",
]
