"""
Test cases for scheduler models.
"""

import pytest
from pydantic import ValidationError

from scheduler.models import (
    CacheEntry, CheckRunResult, CheckStatus, ClassCheckResult, Decision, Action
)


class TestCacheEntry:
    """Test cases for CacheEntry model."""

    def test_round_trip_from_store(self):
        """Test that stored camelCase values validate back into an entry."""
        entry = CacheEntry(hash="abc", change_count=4)
        stored = entry.to_store()

        assert stored["hash"] == "abc"
        assert stored["changeCount"] == 4
        assert isinstance(stored["updatedAt"], str)
        assert CacheEntry.model_validate(stored).change_count == 4

    def test_invalid_values(self):
        """Test validation of hash and count."""
        with pytest.raises(ValidationError):
            CacheEntry(hash="")

        with pytest.raises(ValidationError):
            CacheEntry(hash="abc", change_count=-1)


class TestDecision:
    """Test cases for Decision model."""

    def test_defaults(self):
        """Test that a decision neither writes nor notifies by default."""
        decision = Decision(action=Action.NO_CHANGE, reason="hash unchanged")
        assert not decision.notify
        assert not decision.write_cache
        assert decision.delta == 0


class TestCheckRunResult:
    """Test cases for CheckRunResult model."""

    def test_counts(self):
        """Test the derived notified and error counts."""
        run = CheckRunResult(year=2025, week=45, results=[
            ClassCheckResult(class_name="5a", status=CheckStatus.CHANGES_INCREASED, notified=True),
            ClassCheckResult(class_name="7b", status=CheckStatus.ERROR, error="HTTP 404"),
            ClassCheckResult(class_name="10c", status=CheckStatus.NO_CHANGE),
        ])

        assert run.notified_count == 1
        assert run.error_count == 1
        assert run.success

    def test_run_ids_unique(self):
        """Test that every run gets its own identifier."""
        assert CheckRunResult().run_id != CheckRunResult().run_id
