"""Transactional email templates, provider client and queue job handler."""

from backend.app.emails.dispatcher import DispatchResult, EmailDispatcher, create_email_dispatcher
from backend.app.emails.jobs import EmailJob, EmailJobData
from backend.app.emails.provider import EmailProviderError, ResendClient
from backend.app.emails.templates import TemplateRegistry, UnknownTemplateError, build_template_registry

__all__ = [
    "DispatchResult",
    "EmailDispatcher",
    "EmailJob",
    "EmailJobData",
    "EmailProviderError",
    "ResendClient",
    "TemplateRegistry",
    "UnknownTemplateError",
    "build_template_registry",
    "create_email_dispatcher",
]
