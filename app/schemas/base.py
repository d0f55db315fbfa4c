"""Base schemas for the application."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Base schema class with common configuration."""
    model_config = ConfigDict(from_attributes=True)


class ResponseSchema(BaseSchema):
    """Standard API response envelope."""
    status: str
    message: Optional[str] = None
    data: Optional[dict[str, Any]] = None
