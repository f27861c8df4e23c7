#!/usr/bin/env python3
"""
Cache and Device Management Utility

This script provides admin utilities for the schedule monitor:
- List, clear and purge cache entries
- Dry-run diagnose of every registered class
- Probe device tokens and remove invalid ones
- Send a test push to one class
- Show service status
"""

import asyncio
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from utilities.logger import setup_logging
from utilities.config import config
from utilities.services import MonitorServices, build_services
from scheduler.cache_store import current_week
from scheduler.change_detector import format_diagnosis_text


async def list_cache_entries(services: MonitorServices):
    """List all cache entries."""
    print("\n" + "="*80)
    print("📋 CACHE ENTRIES")
    print("="*80)

    entries = await services.detector.cache.list_entries()
    if not entries:
        print("❌ No cache entries found")
        return

    print(f"✅ Found {len(entries)} entries:")
    print()
    for i, entry in enumerate(entries, 1):
        value = entry["value"] if isinstance(entry["value"], dict) else {}
        print(f"{i:3d}. {entry['key']}")
        print(f"     Changes: {value.get('changeCount')}")
        print(f"     Updated: {value.get('updatedAt')}")
        print(f"     Hash: {str(value.get('hash', ''))[:16]}...")
        print()


async def clear_class(services: MonitorServices, class_name: str):
    """Clear the current-week entry of one class."""
    year, week = current_week()
    deleted = await services.detector.cache.clear_class(class_name, year, week)
    if deleted:
        print(f"✅ Cleared cache for {class_name} (KW {week}/{year})")
    else:
        print(f"ℹ️  No cache entry for {class_name} (KW {week}/{year})")


async def clear_all(services: MonitorServices):
    deleted = await services.detector.cache.clear_all()
    print(f"✅ Cleared {deleted} cache entries")


async def purge_stale(services: MonitorServices):
    year, week = current_week()
    deleted = await services.detector.cache.purge_stale(year, week)
    print(f"✅ Purged {deleted} entries from weeks other than KW {week}/{year}")


async def diagnose(services: MonitorServices, class_name=None):
    report = await services.detector.diagnose(class_name=class_name)
    print(format_diagnosis_text(report))


async def cleanup_devices(services: MonitorServices, dry_run: bool):
    report = await services.dispatcher.prune_invalid_devices(dry_run=dry_run)
    print(f"\n🧹 Token cleanup {'(DRY RUN)' if dry_run else ''}")
    print(f"   Checked: {report.checked}")
    print(f"   Valid:   {report.valid}")
    print(f"   Invalid: {report.invalid}")
    print(f"   Removed: {report.removed}")
    for device in report.invalid_devices:
        print(f"   ❌ {device.device} ({device.status_code} {device.reason})")


async def test_push(services: MonitorServices, class_name: str):
    report = await services.dispatcher.send_test_push(class_name)
    if report.devices == 0:
        print(f"❌ No devices registered for {class_name}")
        return
    print(f"📱 {report.sent}/{report.devices} delivered, {report.removed} removed")
    for delivery in report.deliveries:
        icon = "✅" if delivery.status.value == "success" else "❌"
        print(f"   {icon} {delivery.device} {delivery.status.value} {delivery.reason or ''}")


async def show_status(services: MonitorServices):
    status = await services.status()
    year, week = current_week()
    print("\n📊 STATUS")
    print("="*80)
    print(f"   Week:          KW {week}/{year}")
    print(f"   Devices:       {status['devices']}")
    print(f"   Classes:       {status['class_count']} {', '.join(status['classes'])}")
    print(f"   Last check:    {status['last_check']}")
    print(f"   Cache entries: {status['cache_entries']}")


def print_usage():
    print("Usage: python manage_cache.py <command> [args]")
    print()
    print("Commands:")
    print("  list                  - List all cache entries")
    print("  clear <class>         - Clear the current-week entry of a class")
    print("  clear-all             - Clear every cache entry")
    print("  purge                 - Remove entries of past weeks")
    print("  diagnose [class]      - Dry-run check without caching or pushing")
    print("  cleanup [--dry-run]   - Remove devices with invalid push tokens")
    print("  test-push <class>     - Send a test push to a class")
    print("  status                - Show service status")


async def main():
    """Main function."""
    if len(sys.argv) < 2:
        print_usage()
        sys.exit(1)

    command = sys.argv[1].lower()
    args = sys.argv[2:]

    if command in ("clear", "test-push") and not args:
        print(f"❌ Error: class name required for {command}")
        print_usage()
        sys.exit(1)

    # Setup logging
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file,
        debug=config.debug
    )

    services = build_services()
    await services.connect()
    try:
        if command == "list":
            await list_cache_entries(services)
        elif command == "clear":
            await clear_class(services, args[0])
        elif command == "clear-all":
            await clear_all(services)
        elif command == "purge":
            await purge_stale(services)
        elif command == "diagnose":
            await diagnose(services, args[0] if args else None)
        elif command == "cleanup":
            await cleanup_devices(services, dry_run="--dry-run" in args)
        elif command == "test-push":
            await test_push(services, args[0])
        elif command == "status":
            await show_status(services)
        else:
            print(f"❌ Unknown command: {command}")
            print_usage()
            sys.exit(1)
    except Exception as e:
        print(f"❌ Error: {e}")
        sys.exit(1)
    finally:
        await services.close()


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
