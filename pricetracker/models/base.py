"""
Base Pydantic models and response schemas.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel as PydanticBaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class BaseModel(PydanticBaseModel):
    """Base Pydantic model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=False,
        arbitrary_types_allowed=True,
    )


class CamelModel(BaseModel):
    """Model whose JSON form uses camelCase keys; snake_case is accepted on input."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
        use_enum_values=True,
    )


class ErrorResponse(CamelModel):
    """Standard error response."""

    success: bool = Field(default=False, description="Always false for errors")
    error: str = Field(..., description="Human-readable error message")
    error_code: Optional[str] = Field(None, description="Machine-readable error code")
    errors: Optional[list[Any]] = Field(None, description="Validation errors")
    request_id: Optional[str] = Field(None, description="Request correlation ID")


class HealthStatus(BaseModel):
    """Health check status."""

    status: str = Field(..., description="Health status (healthy, degraded, unhealthy)")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Check timestamp"
    )


class DetailedHealthStatus(HealthStatus):
    """Health check status with component statuses."""

    components: dict[str, Any] = Field(
        default_factory=dict, description="Component-specific health status"
    )
    version: Optional[str] = Field(None, description="Application version")
    environment: Optional[str] = Field(None, description="Environment name")
