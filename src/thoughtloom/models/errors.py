"""Error response model emitted by the HTTP surface."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

__all__ = ["ErrorResponse"]


class ErrorResponse(BaseModel):
    """Standardised error payload built from a classified failure."""

    model_config = ConfigDict(extra="forbid")

    code: str = Field(min_length=1)
    kind: str = Field(min_length=1)
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    remediation: str | None = None
    retryable: bool = False
    details: dict[str, Any] = Field(default_factory=dict)
    trace_id: str = Field(min_length=1)
