"""Transactional email templates and the registry that maps job types to them."""
from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from html import escape
from types import MappingProxyType
from typing import Any, Callable, Iterator, Mapping
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

SUPPORT_SENDER = "AbegHelp Customer Support <donotreply@abeghelp.me>"
RESET_PASSWORD_PATH = "/reset-password"

Renderer = Callable[[Mapping[str, Any]], str]


class UnknownTemplateError(KeyError):
    """Raised when an email job names a template that is not registered."""

    def __init__(self, template_type: str) -> None:
        super().__init__(template_type)
        self.template_type = template_type

    def __str__(self) -> str:
        return f"Unknown email template: {self.template_type!r}"


@dataclass(frozen=True)
class EmailTemplate:
    """Subject, sender and renderer for one kind of email."""

    subject: str
    sender: str
    render: Renderer


def _layout(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html>"
        "<html><head><meta charset=\"utf-8\">"
        f"<title>{escape(title)}</title></head>"
        "<body style=\"font-family: Arial, sans-serif; color: #1f2937;\">"
        f"{body}"
        "<p>Cheers,<br>The AbegHelp Team</p>"
        "</body></html>"
    )


def _greeting(data: Mapping[str, Any]) -> str:
    name = data.get("name")
    return f"<p>Hi {escape(str(name))},</p>" if name else "<p>Hi there,</p>"


def build_reset_link(frontend_url: str, token: str) -> str:
    """Construct the absolute password reset link under the frontend URL."""

    parsed = urlparse(frontend_url)
    path = parsed.path.rstrip("/") + RESET_PASSWORD_PATH
    query = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query.update({"token": token})
    return urlunparse(
        (parsed.scheme, parsed.netloc, path, parsed.params, urlencode(query), parsed.fragment)
    )


def welcome_email(data: Mapping[str, Any]) -> str:
    """Render the welcome email sent after registration."""

    return _layout(
        "Welcome to AbegHelp",
        _greeting(data)
        + "<p>Welcome to AbegHelp! Your account has been created and you can now "
        "start and support campaigns that matter to you.</p>",
    )


def forgot_password(data: Mapping[str, Any], *, frontend_url: str) -> str:
    """Render the password reset request email."""

    token = data.get("token")
    if not token:
        raise ValueError("forgotPassword emails require a reset token")
    link = escape(build_reset_link(frontend_url, str(token)), quote=True)
    return _layout(
        "Reset Your Password",
        _greeting(data)
        + "<p>We received a request to reset your password. "
        f"Click the link below to choose a new one.</p><p><a href=\"{link}\">{link}</a></p>"
        "<p>If you did not request a password reset, you can safely ignore this email.</p>",
    )


def reset_password(data: Mapping[str, Any]) -> str:
    """Render the confirmation sent after a password change."""

    return _layout(
        "Password Reset Successful",
        _greeting(data)
        + "<p>Your password has been reset successfully. If you did not make this "
        "change, please contact support immediately.</p>",
    )


class TemplateRegistry(Mapping[str, EmailTemplate]):
    """Immutable mapping from job type to :class:`EmailTemplate`."""

    def __init__(self, templates: Mapping[str, EmailTemplate]) -> None:
        self._templates = MappingProxyType(dict(templates))

    def __getitem__(self, key: str) -> EmailTemplate:
        try:
            return self._templates[key]
        except KeyError:
            raise UnknownTemplateError(key) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._templates)

    def __len__(self) -> int:
        return len(self._templates)

    def resolve(self, key: str) -> EmailTemplate:
        """Return the template for ``key`` or raise :class:`UnknownTemplateError`."""

        return self[key]


def build_template_registry(frontend_url: str) -> TemplateRegistry:
    """Create the registry of transactional email templates."""

    return TemplateRegistry(
        {
            "resetPassword": EmailTemplate(
                subject="Password Reset Successful",
                sender=SUPPORT_SENDER,
                render=reset_password,
            ),
            "forgotPassword": EmailTemplate(
                subject="Reset Your Password",
                sender=SUPPORT_SENDER,
                render=partial(forgot_password, frontend_url=frontend_url),
            ),
            "welcomeEmail": EmailTemplate(
                subject="Welcome to AbegHelp",
                sender=SUPPORT_SENDER,
                render=welcome_email,
            ),
        }
    )


__all__ = [
    "EmailTemplate",
    "SUPPORT_SENDER",
    "TemplateRegistry",
    "UnknownTemplateError",
    "build_reset_link",
    "build_template_registry",
    "forgot_password",
    "reset_password",
    "welcome_email",
]
