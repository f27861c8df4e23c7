"""
Models for scheduling and change detection.

This module defines Pydantic models for:
- Comparison outcomes and decisions
- Persisted cache entries
- Per-class and per-run check results
- Diagnose (dry run) reports
- Scheduler settings
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from notifications.models import DispatchReport


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Action(str, Enum):
    """Outcome of comparing a fresh snapshot with the cached entry."""
    FIRST_CHECK = "first_check"
    NO_CHANGE = "no_change"
    CHANGES_INCREASED = "changes_increased"
    CHANGES_DECREASED = "changes_decreased"
    CONTENT_UPDATED = "content_updated"


class CheckStatus(str, Enum):
    """Status recorded for one class in a batch run."""
    FIRST_CHECK = "first_check"
    NO_CHANGE = "no_change"
    CHANGES_INCREASED = "changes_increased"
    CHANGES_DECREASED = "changes_decreased"
    CONTENT_UPDATED = "content_updated"
    CONFLICT = "conflict"
    ERROR = "error"


class Decision(BaseModel):
    """What to do about one observed snapshot."""
    action: Action
    reason: str
    notify: bool = Field(default=False)
    write_cache: bool = Field(default=False)
    delta: int = Field(default=0, ge=0, description="Increase in change count, 0 unless counts grew")
    magnitude: int = Field(default=0, ge=0, description="Badge number shown with the notification")


class CacheEntry(BaseModel):
    """
    Last known state of one class schedule for one ISO week.

    Stored under ``cache:<class>:<year>:w<week>`` with camelCase keys.
    """
    model_config = ConfigDict(populate_by_name=True)

    hash: str = Field(..., min_length=1)
    change_count: int = Field(default=0, ge=0, alias="changeCount")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")

    def to_store(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ClassCheckResult(BaseModel):
    """Outcome of checking a single class."""
    class_name: str
    status: CheckStatus
    action: Optional[Action] = Field(default=None)
    reason: Optional[str] = Field(default=None)
    change_count: Optional[int] = Field(default=None)
    previous_change_count: Optional[int] = Field(default=None)
    substitutions: int = Field(default=0)
    cancellations: int = Field(default=0)
    delta: int = Field(default=0)
    cache_written: bool = Field(default=False)
    notified: bool = Field(default=False)
    message: Optional[str] = Field(default=None)
    dispatch: Optional[DispatchReport] = Field(default=None)
    error: Optional[str] = Field(default=None)


class CheckRunResult(BaseModel):
    """Outcome of one batch run over all registered classes."""
    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    success: bool = Field(default=True)
    year: Optional[int] = Field(default=None)
    week: Optional[int] = Field(default=None)
    classes_checked: int = Field(default=0)
    results: List[ClassCheckResult] = Field(default_factory=list)
    error: Optional[str] = Field(default=None)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = Field(default=None)
    duration_seconds: float = Field(default=0.0)

    @property
    def notified_count(self) -> int:
        return sum(1 for r in self.results if r.notified)

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.results if r.status == CheckStatus.ERROR)


class CacheDetails(BaseModel):
    key: str
    exists: bool
    hash: Optional[str] = Field(default=None)
    change_count: Optional[int] = Field(default=None)
    updated_at: Optional[datetime] = Field(default=None)


class Diagnosis(BaseModel):
    """Dry-run comparison for one class; nothing is written and nothing is sent."""
    class_name: str
    status: str = Field(default="ok", description="ok, no_slug, fetch_error or error")
    url: Optional[str] = Field(default=None)
    would_push: bool = Field(default=False)
    action: Optional[Action] = Field(default=None)
    reason: Optional[str] = Field(default=None)
    substitutions: int = Field(default=0)
    cancellations: int = Field(default=0)
    change_count: int = Field(default=0)
    summary_table_count: Optional[int] = Field(default=None, description="Change count from the summary-table reading")
    push_message: Optional[str] = Field(default=None)
    content_hash: Optional[str] = Field(default=None)
    cache: Optional[CacheDetails] = Field(default=None)
    error: Optional[str] = Field(default=None)


class DiagnoseReport(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    year: int
    week: int
    results: List[Diagnosis] = Field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "total": len(self.results),
            "ok": sum(1 for r in self.results if r.status == "ok"),
            "no_slug": sum(1 for r in self.results if r.status == "no_slug"),
            "fetch_error": sum(1 for r in self.results if r.status == "fetch_error"),
            "no_cache": sum(1 for r in self.results if r.status == "ok" and r.cache and not r.cache.exists),
            "would_push": sum(1 for r in self.results if r.would_push),
        }


class SchedulerConfig(BaseModel):
    """Configuration for the scheduler system."""
    interval_minutes: int = Field(default=15, ge=1, le=1440, description="Minutes between batch runs")
    test_interval_minutes: int = Field(default=2, ge=1, description="Interval used in test mode")
    timezone: str = Field(default="Europe/Berlin", description="Timezone for scheduling and ISO weeks")
    max_concurrent_classes: int = Field(default=5, ge=1, description="Classes checked in parallel")
    purge_stale_cache: bool = Field(default=False, description="Drop cache entries of past weeks daily")
    purge_hour: int = Field(default=3, ge=0, le=23)
