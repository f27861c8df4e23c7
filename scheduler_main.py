"""
Main entry point for the schedule change monitor.

This script starts the scheduler service that checks every registered class
for schedule changes and notifies subscribed devices.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

import structlog
from utilities.logger import setup_logging
from utilities.config import config
from utilities.services import build_services
from scheduler.scheduler_service import SchedulerService
from scheduler.models import SchedulerConfig


async def main():
    """Main function to start the scheduler service."""
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file,
        debug=config.debug
    )

    logger = structlog.get_logger(__name__)
    logger.info("Starting schedule change monitor")

    test_mode = False
    run_once = False

    if len(sys.argv) > 1:
        if sys.argv[1] == '--test':
            test_mode = True
        elif sys.argv[1] == '--once':
            run_once = True
        elif sys.argv[1] != '--daemon':
            print(f"Unknown argument: {sys.argv[1]}")
            print("Usage: python scheduler_main.py [--test|--once|--daemon]")
            sys.exit(1)

    scheduler_config = SchedulerConfig(
        interval_minutes=config.check_interval_minutes,
        timezone=config.timezone,
        max_concurrent_classes=config.max_concurrent_classes,
        purge_stale_cache=config.purge_stale_cache,
    )

    services = build_services(max_concurrent=scheduler_config.max_concurrent_classes)
    if not services.push_client.is_configured():
        logger.warning("APNs credentials are not configured, notifications will fail")
    scheduler_service = SchedulerService(scheduler_config, services.kv, services.detector)

    print("\n" + "="*60)
    if run_once:
        print("🔄 RUN ONCE MODE ENABLED")
        print("="*60)
        print("✅ Schedule Check: Single run")
        print("✅ Exit after completion")
    elif test_mode:
        print("🧪 TEST MODE ENABLED")
        print("="*60)
        print(f"✅ Schedule Check: Every {scheduler_config.test_interval_minutes} minutes")
    else:
        print("🏭 DAEMON MODE ENABLED")
        print("="*60)
        print(f"✅ Schedule Check: Every {scheduler_config.interval_minutes} minutes ({scheduler_config.timezone})")
        if scheduler_config.purge_stale_cache:
            print(f"✅ Stale Cache Purge: Daily at {scheduler_config.purge_hour:02d}:00")
    print("="*60)

    try:
        await scheduler_service.start(test_mode=test_mode, run_once=run_once)
        if run_once and scheduler_service.last_result and not scheduler_service.last_result.success:
            sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
    except Exception as e:
        logger.error("Failed to start scheduler service", error=str(e))
        sys.exit(1)
    finally:
        scheduler_service.stop()
        await services.close()


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
