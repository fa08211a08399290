"""Tests for configuration loading and duration parsing."""
from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest
import yaml

from backend.app.config import (
    ENVIRONMENT_OVERRIDES,
    AppConfig,
    ConfigError,
    load_config,
    parse_duration,
)

REQUIRED_ENV = {
    "DATABASE_URL": "sqlite+aiosqlite:///./test.db",
    "REDIS_URL": "redis://localhost",
    "REDIS_PORT": "6380",
    "REDIS_PASSWORD": "redis-secret",
    "CACHE_REDIS_URL": "redis://localhost:6379/1",
    "RESEND_API_KEY": "re_test_key",
    "ACCESS_JWT_KEY": "access-secret",
    "REFRESH_JWT_KEY": "refresh-secret",
}


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for variable, _ in ENVIRONMENT_OVERRIDES:
        monkeypatch.delenv(variable, raising=False)
    monkeypatch.setenv("ABEGHELP_ENV_FILE", str(tmp_path / "missing.env"))


def test_default_config_with_environment_secrets(monkeypatch: pytest.MonkeyPatch) -> None:
    for key, value in REQUIRED_ENV.items():
        monkeypatch.setenv(key, value)

    config = load_config()

    assert isinstance(config, AppConfig)
    assert config.app.name == "AbegHelp"
    assert config.app.port == 8000
    assert config.db.url == "sqlite+aiosqlite:///./test.db"
    assert config.redis.port == 6380
    assert config.email.api_key == "re_test_key"
    assert config.email.base_url == "https://api.resend.com"
    assert config.jwt.access_key == "access-secret"
    assert config.jwt.refresh_key == "refresh-secret"
    assert config.jwt_expires_in.access == timedelta(minutes=15)
    assert config.jwt_expires_in.refresh == timedelta(days=7)


def test_environment_overrides_yaml(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "app": {"name": "FromYaml", "port": 9000, "client": "http://client"},
                "jwt_expires_in": {"access": "1h", "refresh": "30d"},
                "frontend_url": "http://yaml-frontend",
            }
        ),
        encoding="utf-8",
    )
    for key, value in REQUIRED_ENV.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("PORT", "4000")
    monkeypatch.setenv("NODE_ENV", "production")
    monkeypatch.setenv("ACCESS_JWT_EXPIRES_IN", "30m")
    monkeypatch.setenv("FRONTEND_URL", "https://abeghelp.me")

    config = load_config(path)

    assert config.app.name == "FromYaml"
    assert config.app.port == 4000
    assert config.app.env == "production"
    assert config.jwt_expires_in.access == timedelta(minutes=30)
    assert config.jwt_expires_in.refresh == timedelta(days=30)
    assert config.frontend_url == "https://abeghelp.me"


def test_missing_secret_fails_fast(monkeypatch: pytest.MonkeyPatch) -> None:
    for key, value in REQUIRED_ENV.items():
        if key != "REFRESH_JWT_KEY":
            monkeypatch.setenv(key, value)

    with pytest.raises(ConfigError):
        load_config()


def test_env_file_is_loaded(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    lines = [f"{key}={value}" for key, value in REQUIRED_ENV.items()]
    lines.append('FRONTEND_URL="https://from-env-file.example"  ')
    lines.append("# comment line")
    env_file.write_text("\n".join(lines), encoding="utf-8")
    # Register the keys so monkeypatch restores them after the loader writes os.environ.
    for key in [*REQUIRED_ENV, "FRONTEND_URL"]:
        monkeypatch.setenv(key, "")
    monkeypatch.setenv("ABEGHELP_ENV_FILE", str(env_file))

    config = load_config()

    assert config.email.api_key == "re_test_key"
    assert config.frontend_url == "https://from-env-file.example"


def test_env_file_parsing_rules(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    lines = [f"{key}={value}" for key, value in REQUIRED_ENV.items() if key != "RESEND_API_KEY"]
    lines += [
        "export RESEND_API_KEY=re_exported  # trailing note",
        "APP_CLIENT='web#client'",
        "APP_NAME=FromFile",
        "not a variable",
    ]
    env_file.write_text("\n".join(lines), encoding="utf-8")
    for key in [*REQUIRED_ENV, "APP_CLIENT"]:
        monkeypatch.setenv(key, "")
    monkeypatch.setenv("APP_NAME", "FromShell")
    monkeypatch.setenv("ABEGHELP_ENV_FILE", str(env_file))

    config = load_config()

    assert config.email.api_key == "re_exported"
    assert config.app.client == "web#client"
    assert config.app.name == "FromShell"


def test_invalid_yaml_raises(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("app: [unclosed", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("15m", timedelta(minutes=15)),
        ("7d", timedelta(days=7)),
        ("12h", timedelta(hours=12)),
        ("90", timedelta(seconds=90)),
        (3600, timedelta(hours=1)),
    ],
)
def test_parse_duration(raw, expected) -> None:
    assert parse_duration(raw) == expected


@pytest.mark.parametrize("raw", ["soon", "0s", "-5m", True])
def test_parse_duration_rejects_invalid(raw) -> None:
    with pytest.raises(ValueError):
        parse_duration(raw)
