"""
API models and schemas for the FastAPI application.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RegisterRequest(BaseModel):
    """Device registration request; accepts the app's camelCase field names."""
    model_config = ConfigDict(populate_by_name=True)

    device_token: str = Field(..., min_length=1, alias="deviceToken", description="APNs device token")
    class_name: str = Field(..., min_length=1, alias="className", description="School class to follow")
    username: str = Field(..., min_length=1, description="Display name of the student")


class UnregisterRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    device_token: str = Field(..., min_length=1, alias="deviceToken")


class RegisterResponse(BaseModel):
    success: bool = Field(default=True)
    message: str
    class_name: Optional[str] = Field(default=None)


class CacheClearRequest(BaseModel):
    """Clear one class for the current week, every entry, or every stale week."""
    class_name: Optional[str] = Field(default=None, description="Class whose current-week entry to clear")
    all: bool = Field(default=False, description="Clear every cache entry")
    stale_only: bool = Field(default=False, description="Only drop entries of past weeks")


class CacheClearResponse(BaseModel):
    success: bool = Field(default=True)
    deleted: int = Field(..., description="Number of cache entries removed")
    year: int
    week: int


class PushTestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    class_name: str = Field(..., min_length=1, alias="className")


class StatusResponse(BaseModel):
    """Service status response model."""
    devices: int = Field(..., description="Registered devices")
    classes: List[str] = Field(default_factory=list, description="Classes with at least one device")
    class_count: int
    last_check: str = Field(..., description="ISO timestamp of the last batch run or 'never'")
    cache_entries: int
    year: int
    week: int


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error details")
    status_code: int = Field(..., description="HTTP status code")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Key-value store connection status")
