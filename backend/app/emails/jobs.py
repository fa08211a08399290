"""Schema for email jobs delivered by the queue consumer."""
from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class EmailJobData(BaseModel):
    """Recipient plus template-specific fields."""

    model_config = ConfigDict(frozen=True, extra="allow")

    to: str = Field(..., min_length=3)

    def as_template_data(self) -> Dict[str, Any]:
        """Return every field, including extras, for template rendering."""

        return self.model_dump()


class EmailJob(BaseModel):
    """One email to send: a template key and its payload."""

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., min_length=1)
    data: EmailJobData


__all__ = ["EmailJob", "EmailJobData"]
