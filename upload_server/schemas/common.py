"""Common schemas used across multiple endpoints."""

from typing import Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Response model for errors."""
    success: bool = False
    message: str
    code: str
    missing_index: Optional[int] = Field(default=None, serialization_alias="missingIndex")
