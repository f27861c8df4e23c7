"""
Change detection engine for monitoring class schedules.

This module provides:
- The per-class pipeline: fetch, snapshot, compare, cache, notify
- Batch runs over every registered class with per-class error isolation
- A dry-run diagnose mode and its plain-text rendering
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional

import structlog

from notifications.dispatcher import NotificationDispatcher
from notifications.subscriptions import SubscriptionStore
from scheduler.cache_store import CacheStore, cache_key, current_week
from scheduler.comparison import decide
from scheduler.messages import build_message
from scheduler.models import (
    CacheDetails, CacheEntry, CheckRunResult, CheckStatus, ClassCheckResult, Diagnosis, DiagnoseReport
)
from storage.kv import KeyValueStore
from timetable.errors import FetchError, MappingError, MappingFetchError
from timetable.extractor import extract_changes_from_summary
from timetable.fetcher import ScheduleFetcher
from timetable.models import ScheduleSnapshot
from utilities.config import config
from utilities.logger import CheckLogger

logger = structlog.get_logger(__name__)

LAST_CHECK_KEY = "meta:lastCheck"


class ChangeDetector:
    """Engine for detecting schedule changes and notifying subscribed devices."""

    def __init__(
        self,
        kv: KeyValueStore,
        fetcher: ScheduleFetcher,
        dispatcher: NotificationDispatcher,
        max_concurrent: Optional[int] = None,
    ):
        """
        Initialize change detector.

        Args:
            kv: Key-value store holding cache entries, subscriptions and run metadata
            fetcher: Schedule source client
            dispatcher: Notification dispatcher
            max_concurrent: Classes checked in parallel, defaults to the configured limit
        """
        self.kv = kv
        self.cache = CacheStore(kv)
        self.fetcher = fetcher
        self.dispatcher = dispatcher
        self.subscriptions: SubscriptionStore = dispatcher.subscriptions
        self.max_concurrent = max_concurrent or config.max_concurrent_classes
        self.logger = logger.bind(component="change_detector")

    async def check_class(self, class_name: str, mapping: Dict[str, str], year: int, week: int) -> ClassCheckResult:
        """
        Run the full pipeline for one class.

        The cache is written before any notification goes out, so a failed
        push never causes the same change to be announced again. The write is
        conditional on the version read at the start; a run that loses that
        race records a conflict and does not notify.

        Raises:
            MappingError: If the class has no slug
            FetchError: If the schedule page cannot be fetched
        """
        slug = self.fetcher.resolve_slug(mapping, class_name)
        raw_markup = await self.fetcher.fetch_schedule(slug, week)
        snapshot = ScheduleSnapshot.from_markup(raw_markup)

        previous, version = await self.cache.load(class_name, year, week)
        decision = decide(previous, snapshot)

        result = ClassCheckResult(
            class_name=class_name,
            status=CheckStatus(decision.action.value),
            action=decision.action,
            reason=decision.reason,
            change_count=snapshot.change_count,
            previous_change_count=previous.change_count if previous else None,
            substitutions=snapshot.substitutions,
            cancellations=snapshot.cancellations,
            delta=decision.delta,
        )

        if decision.write_cache:
            entry = CacheEntry(hash=snapshot.content_hash, change_count=snapshot.change_count)
            if not await self.cache.save(class_name, year, week, entry, version):
                result.status = CheckStatus.CONFLICT
                result.reason = f"{decision.reason}; cache entry changed by a concurrent run"
                return result
            result.cache_written = True

        if decision.notify:
            result.message = build_message(snapshot.substitutions, snapshot.cancellations, decision.magnitude)
            try:
                result.dispatch = await self.dispatcher.dispatch(class_name, decision.magnitude, result.message)
                result.notified = True
            except Exception as e:
                self.logger.error("Notification dispatch failed", class_name=class_name, error=str(e))
                result.error = f"Notification failed: {e}"

        return result

    async def _check_class_isolated(
        self, class_name: str, mapping: Dict[str, str], year: int, week: int, check_logger: CheckLogger
    ) -> ClassCheckResult:
        try:
            result = await self.check_class(class_name, mapping, year, week)
        except Exception as e:
            result = ClassCheckResult(class_name=class_name, status=CheckStatus.ERROR, error=str(e))

        check_logger.log_class_result(
            class_name,
            result.status.value,
            reason=result.reason,
            change_count=result.change_count,
            delta=result.delta,
            notified=result.notified,
            error=result.error,
        )
        return result

    async def check_all(self, year: Optional[int] = None, week: Optional[int] = None) -> CheckRunResult:
        """
        Check every class that has at least one subscribed device.

        Classes run in parallel up to ``max_concurrent``. A failure in one
        class is recorded in its result and never stops the others; only a
        failure to load the class mapping aborts the run.

        Args:
            year: ISO year override, defaults to the current one
            week: ISO week override, defaults to the current one

        Returns:
            CheckRunResult with one entry per class
        """
        if year is None or week is None:
            year, week = current_week()

        run = CheckRunResult(year=year, week=week)
        check_logger = CheckLogger("change_detector").bind_context(run_id=run.run_id)
        started = time.monotonic()

        try:
            classes = await self.subscriptions.list_classes()
            run.classes_checked = len(classes)
            check_logger.log_check_start(len(classes), year, week)

            if classes:
                mapping = await self.fetcher.fetch_mapping()
                semaphore = asyncio.Semaphore(self.max_concurrent)

                async def guarded(name: str) -> ClassCheckResult:
                    async with semaphore:
                        return await self._check_class_isolated(name, mapping, year, week, check_logger)

                run.results = list(await asyncio.gather(*(guarded(name) for name in classes)))

            await self.kv.set(LAST_CHECK_KEY, datetime.now(timezone.utc).isoformat())

        except MappingFetchError as e:
            run.success = False
            run.error = str(e)
            check_logger.log_error(f"Class mapping unavailable: {e}")

        except Exception as e:
            run.success = False
            run.error = f"Check run failed: {e}"
            check_logger.log_error(run.error)

        run.finished_at = datetime.now(timezone.utc)
        run.duration_seconds = time.monotonic() - started
        check_logger.log_check_complete(
            run.classes_checked, run.notified_count, run.error_count, run.duration_seconds
        )
        return run

    async def last_check(self) -> Optional[str]:
        return await self.kv.get(LAST_CHECK_KEY)

    async def diagnose(
        self, class_name: Optional[str] = None, year: Optional[int] = None, week: Optional[int] = None
    ) -> DiagnoseReport:
        """
        Compare every (or one) registered class without side effects.

        Nothing is written to the cache and no notification is sent. The
        summary-table reading is included as a cross-check of the grid count.

        Raises:
            MappingFetchError: If the class mapping cannot be loaded
        """
        if year is None or week is None:
            year, week = current_week()

        classes = await self.subscriptions.list_classes()
        if class_name:
            classes = [c for c in classes if c == class_name]

        report = DiagnoseReport(year=year, week=week)
        if not classes:
            return report

        mapping = await self.fetcher.fetch_mapping()
        report.results = list(
            await asyncio.gather(*(self._diagnose_class(c, mapping, year, week) for c in classes))
        )
        self.logger.info("Diagnose complete", year=year, week=week, **report.summary)
        return report

    async def _diagnose_class(self, class_name: str, mapping: Dict[str, str], year: int, week: int) -> Diagnosis:
        try:
            slug = self.fetcher.resolve_slug(mapping, class_name)
        except MappingError as e:
            return Diagnosis(class_name=class_name, status="no_slug", error=str(e))

        url = self.fetcher.schedule_url(slug, week)
        try:
            raw_markup = await self.fetcher.fetch_schedule(slug, week)
        except FetchError as e:
            return Diagnosis(class_name=class_name, status="fetch_error", url=url, error=str(e))

        try:
            snapshot = ScheduleSnapshot.from_markup(raw_markup)
            cross_check = extract_changes_from_summary(raw_markup)
            previous, _ = await self.cache.load(class_name, year, week)
        except Exception as e:
            return Diagnosis(class_name=class_name, status="error", url=url, error=str(e))

        if cross_check.total != snapshot.change_count:
            self.logger.info(
                "Summary table disagrees with grid scan",
                class_name=class_name,
                grid=snapshot.change_count,
                summary_table=cross_check.total,
            )

        decision = decide(previous, snapshot)
        diagnosis = Diagnosis(
            class_name=class_name,
            url=url,
            would_push=decision.notify,
            action=decision.action,
            reason=decision.reason,
            substitutions=snapshot.substitutions,
            cancellations=snapshot.cancellations,
            change_count=snapshot.change_count,
            summary_table_count=cross_check.total,
            content_hash=snapshot.content_hash,
            cache=CacheDetails(
                key=cache_key(class_name, year, week),
                exists=previous is not None,
                hash=previous.hash if previous else None,
                change_count=previous.change_count if previous else None,
                updated_at=previous.updated_at if previous else None,
            ),
        )
        if decision.notify:
            diagnosis.push_message = build_message(
                snapshot.substitutions, snapshot.cancellations, decision.magnitude
            )
        return diagnosis


def _rule(char: str) -> str:
    return char * 63


def format_diagnosis_text(report: DiagnoseReport) -> str:
    """Render a diagnose report as a plain-text overview."""
    summary = report.summary
    lines: List[str] = [
        _rule("═"),
        f"  STUNDENPLAN DIAGNOSE  KW {report.week}/{report.year}",
        _rule("═"),
        "",
        "ZUSAMMENFASSUNG",
        _rule("─"),
        f"  Klassen gesamt:      {summary['total']}",
        f"  OK:                  {summary['ok']}",
        f"  Fehlendes Mapping:   {summary['no_slug']}",
        f"  Fetch-Fehler:        {summary['fetch_error']}",
        f"  Noch kein Cache:     {summary['no_cache']}",
        f"  Würde Push senden:   {summary['would_push']}",
        "",
        "KLASSEN DETAILS",
        _rule("═"),
        "",
    ]

    for result in report.results:
        icon = "❌" if result.status != "ok" else ("🚨" if result.would_push else "✅")
        lines.append(f"{icon} {result.class_name}")

        if result.status == "no_slug":
            lines.extend(["   ❌ Kein Slug im Mapping!", ""])
            continue
        if result.status != "ok":
            lines.extend([f"   ❌ Fehler: {result.error}", ""])
            continue

        lines.append(f"   Ausfälle:             {result.cancellations}")
        lines.append(f"   Vertretungen:         {result.substitutions}")
        lines.append(f"   Änderungen gesamt:    {result.change_count}")
        lines.append(f"   Übersichtstabelle:    {result.summary_table_count}")
        if result.cache and result.cache.exists:
            lines.append("   Cache vorhanden:      Ja")
            lines.append(f"   Cache changeCount:    {result.cache.change_count}")
            lines.append(f"   Hash identisch:       {'Ja' if result.cache.hash == result.content_hash else 'Nein'}")
        else:
            lines.append("   Cache vorhanden:      Nein (first_check)")
        lines.append(f"   Push-Aktion:          {'🚨 WÜRDE PUSHEN' if result.would_push else '✓ kein Push'}")
        lines.append(f"   Grund:                {result.reason}")
        if result.push_message:
            lines.append(f'   Push-Text:            "{result.push_message}"')
        lines.append("")

    lines.extend([_rule("═"), "Ende der Diagnose", _rule("═"), ""])
    return "\n".join(lines)
