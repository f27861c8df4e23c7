"""
Week-keyed cache of the last observed schedule state per class.

Keys have the form ``cache:<class>:<iso year>:w<iso week>``. Both parts come
from the ISO-8601 calendar, so the last days of December can belong to week 1
of the next year and the key still stays unique.
"""

from datetime import date, datetime
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

import structlog
from pydantic import ValidationError

from scheduler.models import CacheEntry
from storage.kv import KeyValueStore
from utilities.config import config

logger = structlog.get_logger(__name__)

CACHE_PREFIX = "cache:"


def iso_week(day: date) -> Tuple[int, int]:
    """Return ``(iso_year, iso_week)`` for a date."""
    iso_year, week, _ = day.isocalendar()
    return iso_year, week


def current_week(tz_name: Optional[str] = None) -> Tuple[int, int]:
    """ISO year and week for today in the configured school timezone."""
    today = datetime.now(ZoneInfo(tz_name or config.timezone)).date()
    return iso_week(today)


def cache_key(class_name: str, year: int, week: int) -> str:
    return f"{CACHE_PREFIX}{class_name}:{year}:w{week}"


def parse_cache_key(key: str) -> Optional[Tuple[str, int, int]]:
    """Split a cache key into class, year and week; None for foreign keys."""
    if not key.startswith(CACHE_PREFIX):
        return None
    class_name, sep, rest = key[len(CACHE_PREFIX):].rpartition(":w")
    if not sep:
        return None
    class_name, sep, year = class_name.rpartition(":")
    if not sep or not year.isdigit() or not rest.isdigit():
        return None
    return class_name, int(year), int(rest)


class CacheStore:
    """
    Cache entries on top of the key-value store.

    ``load`` returns the entry together with its storage version and ``save``
    only succeeds when that version is still current. Two overlapping runs
    for the same class therefore cannot both record and announce a change.
    """

    def __init__(self, kv: KeyValueStore):
        self.kv = kv
        self.logger = logger.bind(component="cache_store")

    async def load(self, class_name: str, year: int, week: int) -> Tuple[Optional[CacheEntry], int]:
        key = cache_key(class_name, year, week)
        value, version = await self.kv.get_versioned(key)
        if value is None:
            return None, version

        try:
            return CacheEntry.model_validate(value), version
        except ValidationError as e:
            # Unreadable entries are treated as absent but keep their version,
            # so the next save overwrites them through the normal CAS path.
            self.logger.warning("Discarding unreadable cache entry", key=key, error=str(e))
            return None, version

    async def save(self, class_name: str, year: int, week: int, entry: CacheEntry, expected_version: int) -> bool:
        """
        Write ``entry`` if the stored version still equals ``expected_version``.

        Returns:
            True on success, False when another run wrote first
        """
        key = cache_key(class_name, year, week)
        written = await self.kv.set_if_version(key, entry.to_store(), expected_version)
        if written:
            self.logger.debug("Cache entry written", key=key, change_count=entry.change_count)
        else:
            self.logger.warning("Cache entry changed concurrently", key=key, expected_version=expected_version)
        return written

    async def clear_class(self, class_name: str, year: int, week: int) -> bool:
        key = cache_key(class_name, year, week)
        deleted = await self.kv.delete(key)
        self.logger.info("Cleared cache entry", key=key, existed=deleted)
        return deleted

    async def clear_all(self) -> int:
        keys = await self.kv.keys(CACHE_PREFIX)
        for key in keys:
            await self.kv.delete(key)
        self.logger.info("Cleared all cache entries", deleted=len(keys))
        return len(keys)

    async def purge_stale(self, year: int, week: int) -> int:
        """Delete entries for any week other than ``(year, week)``."""
        deleted = 0
        for key in await self.kv.keys(CACHE_PREFIX):
            parsed = parse_cache_key(key)
            if parsed is not None and (parsed[1], parsed[2]) == (year, week):
                continue
            await self.kv.delete(key)
            deleted += 1
        self.logger.info("Purged stale cache entries", deleted=deleted, year=year, week=week)
        return deleted

    async def list_entries(self) -> List[dict]:
        entries = []
        for key in await self.kv.keys(CACHE_PREFIX):
            parsed = parse_cache_key(key)
            value = await self.kv.get(key)
            item = {"key": key, "value": value}
            if parsed:
                item.update({"class_name": parsed[0], "year": parsed[1], "week": parsed[2]})
            entries.append(item)
        return entries

    async def count(self) -> int:
        return len(await self.kv.keys(CACHE_PREFIX))

