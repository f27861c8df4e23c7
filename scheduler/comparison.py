"""
Comparison of a fresh schedule snapshot against the cached entry.

``decide`` is pure: it reads nothing and writes nothing, so the batch run, the
diagnose dry run and tests all share it.
"""

from typing import Optional

from scheduler.models import Action, CacheEntry, Decision
from timetable.models import ScheduleSnapshot


def decide(previous: Optional[CacheEntry], current: ScheduleSnapshot) -> Decision:
    """
    Classify the transition from ``previous`` to ``current``.

    Args:
        previous: Cached entry for the class and week, None on first observation
        current: Snapshot computed from the page just fetched

    Returns:
        Decision with the action, a short reason and the notify/write flags
    """
    if previous is None:
        return Decision(
            action=Action.FIRST_CHECK,
            reason="first check, no baseline",
            write_cache=True,
        )

    # An identical hash is proof of no change, whatever the counts say.
    if previous.hash == current.content_hash:
        return Decision(action=Action.NO_CHANGE, reason="hash unchanged")

    old_count = previous.change_count
    new_count = current.change_count

    if new_count > old_count:
        delta = new_count - old_count
        return Decision(
            action=Action.CHANGES_INCREASED,
            reason=f"new changes: {old_count} -> {new_count}",
            notify=True,
            write_cache=True,
            delta=delta,
            magnitude=delta,
        )

    if new_count < old_count:
        return Decision(
            action=Action.CHANGES_DECREASED,
            reason=f"changes cleared: {old_count} -> {new_count}",
            write_cache=True,
        )

    return Decision(
        action=Action.CONTENT_UPDATED,
        reason=f"content updated: same count ({new_count}), different hash",
        notify=True,
        write_cache=True,
        magnitude=max(new_count, 1),
    )
