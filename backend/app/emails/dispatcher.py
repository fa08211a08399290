"""Queue job handler that renders and sends transactional emails."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

import httpx
from pydantic import ValidationError

from backend.app.config import AppConfig
from backend.app.emails.jobs import EmailJob
from backend.app.emails.provider import EmailProvider, ResendClient
from backend.app.emails.templates import (
    TemplateRegistry,
    UnknownTemplateError,
    build_template_registry,
)

LOGGER = logging.getLogger(__name__)

STATUS_SENT = "sent"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of handling one email job.

    The dispatcher never raises; callers that want retries or dead-lettering
    inspect ``status`` and ``reason`` instead.
    """

    status: str
    template_type: Optional[str]
    recipient: Optional[str]
    delivery_id: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        """Return whether the provider accepted the email."""

        return self.status == STATUS_SENT


class EmailDispatcher:
    """Resolve the job's template and hand the rendered email to the provider."""

    def __init__(self, provider: EmailProvider, registry: TemplateRegistry) -> None:
        self._provider = provider
        self._registry = registry

    @property
    def registry(self) -> TemplateRegistry:
        """Return the template registry used for lookups."""

        return self._registry

    async def __call__(self, job: Union[EmailJob, Mapping[str, Any]]) -> DispatchResult:
        return await self.dispatch(job)

    async def dispatch(self, job: Union[EmailJob, Mapping[str, Any]]) -> DispatchResult:
        """Send the email described by ``job`` and report the outcome."""

        if not isinstance(job, EmailJob):
            try:
                job = EmailJob.model_validate(job)
            except ValidationError as exc:
                LOGGER.error("Rejected malformed email job: %s", exc, extra={"error": str(exc)})
                raw_data = job.get("data") if isinstance(job, Mapping) else None
                return DispatchResult(
                    status=STATUS_FAILED,
                    template_type=_raw_field(job, "type"),
                    recipient=_raw_field(raw_data, "to"),
                    reason="invalid_job",
                    error=str(exc),
                )

        template_type = job.type
        recipient = job.data.to
        context = {"template_type": template_type, "recipient": recipient}

        try:
            template = self._registry.resolve(template_type)
        except UnknownTemplateError as exc:
            LOGGER.error(
                "Cannot deliver %s email to %s: %s",
                template_type,
                recipient,
                exc,
                extra=context,
            )
            return DispatchResult(
                status=STATUS_FAILED,
                template_type=template_type,
                recipient=recipient,
                reason="unknown_template",
                error=str(exc),
            )

        try:
            html = template.render(job.data.as_template_data())
        except Exception as exc:
            LOGGER.error(
                "Failed to render %s email to %s: %s",
                template_type,
                recipient,
                exc,
                extra={**context, "error": str(exc)},
            )
            return DispatchResult(
                status=STATUS_FAILED,
                template_type=template_type,
                recipient=recipient,
                reason="render_error",
                error=str(exc),
            )

        message = {
            "from": template.sender,
            "to": recipient,
            "subject": template.subject,
            "html": html,
        }
        try:
            delivery_id = await self._provider.send(message)
        except Exception as exc:
            LOGGER.error(
                "Email provider failed to deliver %s email to %s: %s",
                template_type,
                recipient,
                exc,
                extra={**context, "error": str(exc)},
            )
            return DispatchResult(
                status=STATUS_FAILED,
                template_type=template_type,
                recipient=recipient,
                reason="provider_error",
                error=str(exc),
            )

        LOGGER.info(
            "Email provider delivered %s email to %s",
            template_type,
            recipient,
            extra={**context, "delivery_id": delivery_id},
        )
        return DispatchResult(
            status=STATUS_SENT,
            template_type=template_type,
            recipient=recipient,
            delivery_id=delivery_id,
        )


def _raw_field(value: Any, key: str) -> Optional[str]:
    if isinstance(value, Mapping):
        field = value.get(key)
        return field if isinstance(field, str) else None
    return None


def create_email_dispatcher(
    config: AppConfig, client: Optional[httpx.AsyncClient] = None
) -> EmailDispatcher:
    """Wire the Resend client and template registry from configuration."""

    provider = ResendClient.from_config(config.email, client=client)
    registry = build_template_registry(config.frontend_url)
    return EmailDispatcher(provider, registry)


__all__ = [
    "DispatchResult",
    "EmailDispatcher",
    "STATUS_FAILED",
    "STATUS_SENT",
    "create_email_dispatcher",
]
