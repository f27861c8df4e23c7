"""
Main scheduler service for periodic schedule checks.

This module provides:
- Interval scheduling with APScheduler
- Change detection orchestration
- Optional nightly purge of cache entries from past weeks
- Error handling and recovery
"""

import asyncio
import signal
import sys
from typing import Dict, Optional

import structlog
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from scheduler.cache_store import current_week
from scheduler.change_detector import ChangeDetector
from scheduler.models import CheckRunResult, SchedulerConfig
from storage.kv import KeyValueStore

logger = structlog.get_logger(__name__)

CHECK_JOB_ID = "schedule_check"
PURGE_JOB_ID = "cache_purge"


class SchedulerService:
    """Main scheduler service for change detection."""

    def __init__(self, config: SchedulerConfig, kv: KeyValueStore, change_detector: ChangeDetector,
                 install_signal_handlers: bool = True):
        """
        Initialize scheduler service.

        Args:
            config: Scheduler configuration
            kv: Key-value store, connected on start
            change_detector: Change detector running the batch checks
            install_signal_handlers: Register SIGINT/SIGTERM handlers for graceful shutdown
        """
        self.config = config
        self.kv = kv
        self.change_detector = change_detector
        self.scheduler = AsyncIOScheduler(timezone=config.timezone)
        self.logger = logger.bind(component="scheduler_service")
        self.last_result: Optional[CheckRunResult] = None

        if install_signal_handlers:
            self._setup_signal_handlers()

        self._setup_scheduler_listeners()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            self.logger.info("Received signal, shutting down gracefully", signal=signum)
            self.stop()
            sys.exit(0)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _setup_scheduler_listeners(self) -> None:
        """Setup scheduler event listeners."""
        def job_executed_listener(event):
            self.logger.info(
                "Job executed successfully",
                job_id=event.job_id,
                duration=event.retval.get('duration', 0) if isinstance(event.retval, dict) else 0
            )

        def job_error_listener(event):
            self.logger.error(
                "Job execution failed",
                job_id=event.job_id,
                error=str(event.exception)
            )

        self.scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)

    async def start(self, test_mode: bool = False, run_once: bool = False) -> None:
        """
        Start the scheduler service.

        Args:
            test_mode: Check every ``test_interval_minutes`` instead of the normal interval
            run_once: Run a single batch check and return
        """
        try:
            if run_once:
                self.logger.info("Starting scheduler service in RUN ONCE MODE")
            elif test_mode:
                self.logger.info("Starting scheduler service in TEST MODE")
            else:
                self.logger.info("Starting scheduler service")

            await self.kv.connect()

            if run_once:
                await self._run_once_mode()
                return

            self._add_scheduled_jobs(test_mode)
            self.scheduler.start()

            self.logger.info(
                "Scheduler service started",
                timezone=self.config.timezone,
                interval_minutes=self._interval(test_mode),
            )

            # Keep the service running
            try:
                while True:
                    await asyncio.sleep(1)
            except KeyboardInterrupt:
                self.logger.info("Received keyboard interrupt, shutting down...")
                self.stop()

        except Exception as e:
            self.logger.error(
                "Failed to start scheduler service",
                error=str(e)
            )
            raise

    def _interval(self, test_mode: bool) -> int:
        return self.config.test_interval_minutes if test_mode else self.config.interval_minutes

    def _add_scheduled_jobs(self, test_mode: bool) -> None:
        """Add the interval check job and, when enabled, the nightly purge."""
        minutes = self._interval(test_mode)
        self.scheduler.add_job(
            func=self._check_job,
            trigger='interval',
            minutes=minutes,
            id=CHECK_JOB_ID,
            name=f"Schedule Check ({minutes}min)",
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )
        self.logger.info("Added schedule check job", interval_minutes=minutes, test_mode=test_mode)

        if self.config.purge_stale_cache:
            self.scheduler.add_job(
                func=self._purge_job,
                trigger=CronTrigger(hour=self.config.purge_hour, minute=0, timezone=self.config.timezone),
                id=PURGE_JOB_ID,
                name="Stale Cache Purge",
                max_instances=1,
                replace_existing=True
            )
            self.logger.info("Added stale cache purge job", hour=self.config.purge_hour)

    async def _run_once_mode(self) -> None:
        """Run one batch check and exit."""
        result = await self.run_check_now()
        if result.success:
            self.logger.info(
                "Schedule check completed successfully",
                classes=result.classes_checked,
                notified=result.notified_count,
                errors=result.error_count,
                duration=round(result.duration_seconds, 3)
            )
        else:
            self.logger.error("Schedule check failed", error=result.error)
        self.logger.info("Run once mode completed. Exiting...")

    async def _check_job(self) -> Dict:
        """Interval job body; returns a small dict for the execution listener."""
        result = await self.run_check_now()
        return {
            'run_id': result.run_id,
            'success': result.success,
            'classes': result.classes_checked,
            'notified': result.notified_count,
            'errors': result.error_count,
            'duration': result.duration_seconds
        }

    async def _purge_job(self) -> Dict:
        year, week = current_week(self.config.timezone)
        try:
            deleted = await self.change_detector.cache.purge_stale(year, week)
            return {'success': True, 'deleted': deleted}
        except Exception as e:
            self.logger.error("Stale cache purge failed", error=str(e))
            return {'success': False, 'error': str(e)}

    async def run_check_now(self) -> CheckRunResult:
        """Run one batch check immediately, outside the schedule."""
        year, week = current_week(self.config.timezone)
        self.last_result = await self.change_detector.check_all(year=year, week=week)
        return self.last_result

    def stop(self) -> None:
        """Stop the scheduler service."""
        try:
            self.logger.info("Stopping scheduler service")

            if self.scheduler.running:
                self.scheduler.shutdown(wait=False)

            self.logger.info("Scheduler service stopped")

        except Exception as e:
            self.logger.error(
                "Error stopping scheduler service",
                error=str(e)
            )

    def get_scheduler_status(self) -> Dict:
        """Get current scheduler status."""
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run_time': job.next_run_time.isoformat() if getattr(job, 'next_run_time', None) else None,
                'trigger': str(job.trigger)
            })

        return {
            'running': self.scheduler.running,
            'timezone': self.config.timezone,
            'jobs': jobs,
            'job_count': len(jobs),
            'last_run': self.last_result.run_id if self.last_result else None
        }
