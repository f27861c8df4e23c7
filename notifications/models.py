"""
Pydantic models for device registrations and push delivery results.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PushStatus(str, Enum):
    """Classification of one push attempt."""
    SUCCESS = "success"
    INVALID = "invalid"  # device token permanently rejected
    FAILED = "failed"    # anything else, retried on the next poll


class PushResult(BaseModel):
    status: PushStatus
    status_code: Optional[int] = Field(default=None, description="HTTP status from the push gateway")
    reason: Optional[str] = Field(default=None, description="Gateway reason or exception text")

    @property
    def ok(self) -> bool:
        return self.status == PushStatus.SUCCESS


class DeviceRegistration(BaseModel):
    """Stored under ``device:<token>``."""
    model_config = ConfigDict(populate_by_name=True)

    device_token: str = Field(..., min_length=1, alias="deviceToken")
    class_name: str = Field(..., min_length=1, alias="className")
    username: Optional[str] = Field(default=None)
    registered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), alias="registeredAt")

    def to_store(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class DeviceDelivery(BaseModel):
    """Push outcome for one device."""
    device: str = Field(..., description="Shortened device token")
    status: PushStatus
    status_code: Optional[int] = Field(default=None)
    reason: Optional[str] = Field(default=None)
    removed: bool = Field(default=False, description="Subscription pruned after an invalid-token answer")


class DispatchReport(BaseModel):
    """Result of notifying every device of one class."""
    class_name: str
    devices: int = Field(default=0)
    sent: int = Field(default=0)
    failed: int = Field(default=0)
    removed: int = Field(default=0)
    deliveries: List[DeviceDelivery] = Field(default_factory=list)


class CleanupReport(BaseModel):
    """Result of probing all registered device tokens."""
    dry_run: bool = Field(default=False)
    checked: int = Field(default=0)
    valid: int = Field(default=0)
    invalid: int = Field(default=0)
    removed: int = Field(default=0)
    invalid_devices: List[DeviceDelivery] = Field(default_factory=list)
