"""Tests for the email job handler and its template registry."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Mapping

import httpx
import pytest

from backend.app.config import AppConfig
from backend.app.emails.dispatcher import EmailDispatcher, create_email_dispatcher
from backend.app.emails.jobs import EmailJob
from backend.app.emails.provider import EmailProviderError
from backend.app.emails.templates import (
    SUPPORT_SENDER,
    EmailTemplate,
    TemplateRegistry,
    UnknownTemplateError,
    build_reset_link,
    build_template_registry,
)

DISPATCHER_LOGGER = "backend.app.emails.dispatcher"


class StubProvider:
    """Collect outgoing messages instead of calling the provider API."""

    def __init__(self) -> None:
        self.messages: List[Dict[str, Any]] = []

    async def send(self, message: Mapping[str, Any]) -> str:
        self.messages.append(dict(message))
        return f"email-{len(self.messages)}"


class FailingProvider:
    """Raise on every send to simulate a provider outage."""

    def __init__(self) -> None:
        self.calls = 0

    async def send(self, message: Mapping[str, Any]) -> str:
        self.calls += 1
        raise EmailProviderError("Resend returned 503: upstream unavailable", status_code=503)


def _dispatcher(provider: Any) -> EmailDispatcher:
    return EmailDispatcher(provider, build_template_registry("https://app.abeghelp.me"))


def _records(caplog: pytest.LogCaptureFixture, level: int) -> List[logging.LogRecord]:
    return [
        record
        for record in caplog.records
        if record.name == DISPATCHER_LOGGER and record.levelno == level
    ]


def test_welcome_email_is_sent_and_logged(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger=DISPATCHER_LOGGER)
    provider = StubProvider()
    job = {"type": "welcomeEmail", "data": {"to": "a@example.com", "name": "A"}}

    result = asyncio.run(_dispatcher(provider).dispatch(job))

    assert result.ok
    assert result.delivery_id == "email-1"
    assert len(provider.messages) == 1
    message = provider.messages[0]
    assert message["subject"] == "Welcome to AbegHelp"
    assert message["from"] == SUPPORT_SENDER
    assert message["to"] == "a@example.com"
    assert "Hi A," in message["html"]

    infos = _records(caplog, logging.INFO)
    assert len(infos) == 1
    assert "welcomeEmail" in infos[0].getMessage()
    assert "a@example.com" in infos[0].getMessage()
    assert not _records(caplog, logging.ERROR)


def test_provider_failure_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger=DISPATCHER_LOGGER)
    provider = FailingProvider()
    job = EmailJob.model_validate(
        {"type": "resetPassword", "data": {"to": "b@example.com", "name": "B"}}
    )

    result = asyncio.run(_dispatcher(provider).dispatch(job))

    assert provider.calls == 1
    assert result.ok is False
    assert result.reason == "provider_error"
    errors = _records(caplog, logging.ERROR)
    assert len(errors) == 1
    text = errors[0].getMessage()
    assert "resetPassword" in text
    assert "b@example.com" in text
    assert "503" in text
    assert not _records(caplog, logging.INFO)


def test_unknown_template_fails_without_sending(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger=DISPATCHER_LOGGER)
    provider = StubProvider()
    job = {"type": "birthdayEmail", "data": {"to": "c@example.com"}}

    result = asyncio.run(_dispatcher(provider)(job))

    assert provider.messages == []
    assert result.ok is False
    assert result.reason == "unknown_template"
    assert result.template_type == "birthdayEmail"
    errors = _records(caplog, logging.ERROR)
    assert len(errors) == 1
    assert "birthdayEmail" in errors[0].getMessage()
    assert "c@example.com" in errors[0].getMessage()


def test_malformed_job_is_rejected(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger=DISPATCHER_LOGGER)
    provider = StubProvider()

    result = asyncio.run(_dispatcher(provider).dispatch({"type": "welcomeEmail", "data": {}}))

    assert provider.messages == []
    assert result.reason == "invalid_job"
    assert result.template_type == "welcomeEmail"
    assert result.recipient is None
    assert len(_records(caplog, logging.ERROR)) == 1


def test_forgot_password_requires_token() -> None:
    provider = StubProvider()
    job = {"type": "forgotPassword", "data": {"to": "d@example.com", "name": "D"}}

    result = asyncio.run(_dispatcher(provider).dispatch(job))

    assert provider.messages == []
    assert result.reason == "render_error"


def _broken_render(data: Mapping[str, Any]) -> str:
    raise RuntimeError("template bug")


def test_unexpected_render_error_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger=DISPATCHER_LOGGER)
    provider = StubProvider()
    registry = TemplateRegistry(
        {"welcomeEmail": EmailTemplate("Welcome to AbegHelp", SUPPORT_SENDER, _broken_render)}
    )
    job = {"type": "welcomeEmail", "data": {"to": "a@example.com"}}

    result = asyncio.run(EmailDispatcher(provider, registry).dispatch(job))

    assert not result.ok
    assert result.reason == "render_error"
    assert result.error == "template bug"
    assert provider.messages == []
    errors = _records(caplog, logging.ERROR)
    assert len(errors) == 1
    assert "welcomeEmail" in errors[0].getMessage()


def test_forgot_password_renders_reset_link() -> None:
    provider = StubProvider()
    job = {
        "type": "forgotPassword",
        "data": {"to": "d@example.com", "name": "D", "token": "reset-123"},
    }

    result = asyncio.run(_dispatcher(provider).dispatch(job))

    assert result.ok
    message = provider.messages[0]
    assert message["subject"] == "Reset Your Password"
    assert "https://app.abeghelp.me/reset-password?token=reset-123" in message["html"]


def test_template_data_is_escaped() -> None:
    provider = StubProvider()
    job = {"type": "welcomeEmail", "data": {"to": "e@example.com", "name": "<script>"}}

    asyncio.run(_dispatcher(provider).dispatch(job))

    assert "<script>" not in provider.messages[0]["html"]
    assert "&lt;script&gt;" in provider.messages[0]["html"]


def test_registry_is_closed_and_immutable() -> None:
    registry = build_template_registry("https://app.abeghelp.me")
    assert set(registry) == {"welcomeEmail", "forgotPassword", "resetPassword"}
    assert "birthdayEmail" not in registry
    with pytest.raises(UnknownTemplateError):
        registry.resolve("birthdayEmail")
    with pytest.raises(TypeError):
        registry["welcomeEmail"] = registry["resetPassword"]  # type: ignore[index]


def test_build_reset_link_preserves_existing_query() -> None:
    link = build_reset_link("https://app.abeghelp.me/?ref=mail", "abc")
    assert link.startswith("https://app.abeghelp.me/reset-password?")
    assert "token=abc" in link


def test_create_email_dispatcher_posts_to_resend(app_config: AppConfig) -> None:
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"id": "resend-42"})

    async def _run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            dispatcher = create_email_dispatcher(app_config, client=client)
            result = await dispatcher.dispatch(
                {"type": "welcomeEmail", "data": {"to": "f@example.com", "name": "F"}}
            )
            assert result.delivery_id == "resend-42"

    asyncio.run(_run())

    assert len(requests) == 1
    body = json.loads(requests[0].content)
    assert body["to"] == "f@example.com"
    assert body["from"] == SUPPORT_SENDER
    assert requests[0].headers["Authorization"] == "Bearer re_test_key"


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        app={"name": "AbegHelp", "port": 8000, "env": "test", "client": "http://localhost:3000"},
        db={"url": "sqlite+aiosqlite:///:memory:"},
        redis={"url": "redis://localhost", "port": 6379, "password": "secret"},
        cache_redis={"url": "redis://localhost:6379/1"},
        email={"api_key": "re_test_key", "base_url": "https://api.resend.test"},
        jwt={"access_key": "access", "refresh_key": "refresh"},
        jwt_expires_in={"access": "15m", "refresh": "7d"},
        frontend_url="https://app.abeghelp.me",
    )
