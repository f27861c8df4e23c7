"""
Pydantic models for schedule snapshots and extracted change counts.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, model_validator


class ExtractionMethod(str, Enum):
    """How a change count was obtained from the page."""
    GRID_SCAN = "grid_scan"
    SUMMARY_TABLE = "summary_table"


class ChangeSummary(BaseModel):
    """Substitutions and cancellations found on one schedule page."""
    substitutions: int = Field(default=0, ge=0, description="Slots still taught with altered subject, room or teacher")
    cancellations: int = Field(default=0, ge=0, description="Slots marked as fully cancelled")
    method: ExtractionMethod = Field(default=ExtractionMethod.GRID_SCAN)

    @property
    def total(self) -> int:
        return self.substitutions + self.cancellations

    def as_dict(self) -> dict:
        return {
            "substitutions": self.substitutions,
            "cancellations": self.cancellations,
            "total": self.total,
        }


class ScheduleSnapshot(BaseModel):
    """
    State of one class schedule as observed by a single check.

    Computed per check and never stored as such; the cache keeps only the
    hash and change count.
    """
    content_hash: str = Field(..., min_length=1, description="SHA-256 of the normalised markup")
    change_count: Optional[int] = Field(default=None, ge=0, description="Substitutions plus cancellations")
    substitutions: int = Field(default=0, ge=0)
    cancellations: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def fill_change_count(self):
        if self.change_count is None:
            self.change_count = self.substitutions + self.cancellations
        return self

    @classmethod
    def from_markup(cls, raw_markup: str) -> "ScheduleSnapshot":
        """Normalise, hash and extract changes from a fetched schedule page."""
        from timetable.extractor import extract_changes
        from timetable.normalizer import fingerprint

        summary = extract_changes(raw_markup)
        return cls(
            content_hash=fingerprint(raw_markup),
            change_count=summary.total,
            substitutions=summary.substitutions,
            cancellations=summary.cancellations,
        )
