"""Base schemas shared by API endpoints."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accepts and emits camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class SuccessResponse(BaseModel):
    """Success response schema."""

    success: bool = Field(default=True, description="Always true")
    message: str = Field(..., description="Success message")
    data: Optional[dict[str, Any]] = Field(None, description="Payload")


class ErrorResponse(BaseModel):
    """Failure envelope produced by the exception handlers."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = Field(default=False)
    message: str
    code: str
    retry_after_seconds: Optional[int] = Field(default=None, alias="retryAfterSeconds")
    attempts_remaining: Optional[int] = Field(default=None, alias="attemptsRemaining")
