"""Cache synchronizer for the local catalog replica.

``CacheSynchronizer`` keeps the SQLite replica (``store.LocalStore``) in step
with the remote catalog (``gateway.RemoteGateway``) without redundant network
work:

- ``load_cached`` reads the replica first and rebuilds building snapshots.
  Open/closed state and room counts are recomputed at read time because they
  depend on the clock; they are never trusted from storage.
- ``update_cache`` walks the remote building listing in fixed-size batches.
  A building is refreshed only when its cached row is missing or older than
  the freshness window. Rooms, images and ratings are fetched concurrently,
  then the building is committed on its own, so progress survives a failure
  part-way through. Buildings missing from the listing are deleted afterwards.
- ``update_terms_cache`` replaces the cached term list wholesale.

Per building the state moves Missing -> Fresh -> Stale -> Refreshing ->
Fresh, or back to Stale when a refresh fails. A failed building keeps its
previously committed rows.

The synchronizer is constructed explicitly by the process entry point; there
is no module-level instance. Until a store is attached every operation
raises ``CacheNotConfiguredError``.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from zoneinfo import ZoneInfo

from .clock import civil_zone, minutes_to_time, utcnow
from .config import Settings, settings as default_settings
from .gateway import GatewayError, RemoteGateway
from .hours import availability_at
from .models import (
    Building,
    BuildingImage,
    BuildingRating,
    BuildingSnapshot,
    Event,
    Room,
    RoomAvailability,
    Term,
    sort_images,
)
from .occupancy import occupancy_clock, room_availability, room_counts
from .store import CachedBuilding, LocalStore
from .terms import current_terms, term_ids

logger = logging.getLogger(__name__)


class CacheNotConfiguredError(RuntimeError):
    """Raised when the synchronizer is used before a local store is attached."""

    def __init__(self) -> None:
        super().__init__("Cache synchronizer has no local store configured")


@dataclass
class UpdateReport:
    """Outcome of one ``update_cache`` run, by building id."""

    refreshed: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    deleted: List[int] = field(default_factory=list)


Details = Tuple[List[Room], List[BuildingImage], List[BuildingRating], List[Event]]


def compose_snapshot(
    building: Building,
    *,
    rooms: List[Room],
    events: List[Event],
    images: List[BuildingImage],
    ratings: List[BuildingRating],
    terms: List[Term],
    now: datetime,
    tz: ZoneInfo,
    favorited: bool = False,
) -> BuildingSnapshot:
    """Compute open/closed and room counts for ``building`` at ``now``."""
    availability = availability_at(building.hours, now, tz)
    letter, clock_time = occupancy_clock(now, tz)
    current = term_ids(current_terms(now, terms, tz))
    total, available = room_counts(rooms, events, current, letter, clock_time, is_open=availability.is_open)
    return BuildingSnapshot(
        building=building,
        isOpen=availability.is_open,
        changesAt=(
            minutes_to_time(availability.boundary).strftime("%H:%M") if availability.boundary is not None else None
        ),
        totalRooms=total,
        availableRooms=available,
        ratings=ratings,
        images=sort_images(images),
        isFavorited=favorited,
    )


class CacheSynchronizer:
    """Keeps the local replica of the remote catalog fresh."""

    def __init__(
        self,
        gateway: RemoteGateway,
        store: Optional[LocalStore] = None,
        settings: Optional[Settings] = None,
        now: Callable[[], datetime] = utcnow,
        tz: Optional[ZoneInfo] = None,
    ) -> None:
        self.gateway = gateway
        self.settings = settings or default_settings
        self._store = store
        self._now = now
        self._tz = tz or civil_zone(self.settings.civil_timezone)
        # (building_id) -> (minute the snapshot was computed for, snapshot)
        self._snapshots: Dict[int, Tuple[datetime, BuildingSnapshot]] = {}
        self.last_report: Optional[UpdateReport] = None
        self._write_lock = asyncio.Lock()

    @property
    def is_configured(self) -> bool:
        return self._store is not None

    @property
    def freshness_window(self) -> timedelta:
        return timedelta(hours=self.settings.cache_freshness_hours)

    def configure(self, store: LocalStore) -> None:
        """Attach the local store."""
        self._store = store
        self._snapshots.clear()
        logger.info("Cache synchronizer configured with store at %s", store.db_path)

    def _require_store(self) -> LocalStore:
        if self._store is None:
            logger.error("Local store not configured")
            raise CacheNotConfiguredError()
        return self._store

    def is_stale(self, last_updated: Optional[datetime], now: Optional[datetime] = None) -> bool:
        """A building is stale when it was never stamped or is older than the window."""
        if last_updated is None:
            return True
        now = now or self._now()
        return now - last_updated > self.freshness_window

    # Reading

    def build_snapshot(
        self,
        cached: CachedBuilding,
        terms: List[Term],
        now: datetime,
        favorite_ids: Iterable[int] = (),
    ) -> Optional[BuildingSnapshot]:
        """Rebuild a snapshot from a cached row, or None if the row is incomplete."""
        building = cached.to_building()
        if building is None:
            logger.warning("Skipping cached building %s due to missing required fields", cached.id)
            return None
        return compose_snapshot(
            building,
            rooms=cached.rooms,
            events=cached.events,
            images=cached.images,
            ratings=cached.ratings,
            terms=terms,
            now=now,
            tz=self._tz,
            favorited=building.id in set(favorite_ids),
        )

    async def load_cached(self, favorite_ids: Iterable[int] = ()) -> List[BuildingSnapshot]:
        """Return snapshots for every usable cached building, ordered by ``sorted_id``."""
        store = self._require_store()
        logger.info("Loading buildings from cache...")
        cached = await asyncio.to_thread(store.load_all)
        terms = await asyncio.to_thread(store.terms)
        now = self._now()
        favorites = set(favorite_ids)
        logger.info("Found %s buildings in cache", len(cached))

        snapshots = [s for s in (self.build_snapshot(c, terms, now, favorites) for c in cached) if s is not None]
        snapshots.sort(key=lambda s: s.building.sorted_id or 0)
        return snapshots

    async def snapshot(self, building_id: int) -> Optional[BuildingSnapshot]:
        """Snapshot of one cached building, memoised for the current minute."""
        store = self._require_store()
        now = self._now()
        minute = now.replace(second=0, microsecond=0)
        memo = self._snapshots.get(building_id)
        if memo is not None and memo[0] == minute:
            return memo[1]

        cached = await asyncio.to_thread(store.load_one, building_id)
        if cached is None:
            return None
        terms = await asyncio.to_thread(store.terms)
        snap = self.build_snapshot(cached, terms, now)
        if snap is not None:
            self._snapshots[building_id] = (minute, snap)
        return snap

    async def rooms(self, building_id: int) -> Optional[List[RoomAvailability]]:
        """Per-room availability for one cached building."""
        store = self._require_store()
        cached = await asyncio.to_thread(store.load_one, building_id)
        if cached is None or cached.to_building() is None:
            return None
        terms = await asyncio.to_thread(store.terms)
        now = self._now()
        is_open = availability_at(cached.hours, now, self._tz).is_open
        letter, clock_time = occupancy_clock(now, self._tz)
        current = term_ids(current_terms(now, terms, self._tz))
        return room_availability(cached.rooms, cached.events, current, letter, clock_time, is_open=is_open)

    # Writing

    async def fetch_details(self, building_id: int) -> Details:
        """Fetch rooms, images and ratings concurrently, then the rooms' events."""
        rooms, images, ratings = await asyncio.gather(
            self.gateway.rooms_for_building(building_id),
            self.gateway.images_for_building(building_id),
            self.gateway.ratings_for_building(building_id),
        )
        events = await self.gateway.events_for_rooms([r.id for r in rooms])
        return rooms, images, ratings, events

    async def _process_building(
        self, store: LocalStore, building: Building, limiter: asyncio.Semaphore, report: UpdateReport
    ) -> None:
        logger.info("Processing building: %s", building.name)
        existing = await asyncio.to_thread(store.get_building, building.id)
        if existing is not None and not self.is_stale(existing.last_updated):
            logger.info("Skipped updating %s - cache is still fresh", building.name)
            report.skipped.append(building.id)
            return

        try:
            async with limiter:
                rooms, images, ratings, events = await self.fetch_details(building.id)
        except Exception as exc:
            logger.exception("Failed to fetch details for building %s (%s): %s", building.id, building.name, exc)
            report.failed.append(building.id)
            return

        try:
            async with self._write_lock:
                existed = await asyncio.to_thread(
                    store.upsert_building, building, rooms, images, ratings, events, self._now()
                )
        except sqlite3.Error as exc:
            logger.exception("Failed to save building %s (%s): %s", building.id, building.name, exc)
            report.failed.append(building.id)
            return
        self._snapshots.pop(building.id, None)
        report.refreshed.append(building.id)
        logger.info(
            "%s building %s with %s rooms, %s images, %s ratings and %s events",
            "Updated cached" if existed else "Created new cached",
            building.name,
            len(rooms),
            len(images),
            len(ratings),
            len(events),
        )

    async def update_cache(self, buildings: List[Building]) -> UpdateReport:
        """Merge the full remote building listing into the replica.

        Buildings are processed in batches of ``cache_batch_size``; every
        task of a batch finishes before the next batch starts. Afterwards
        cached buildings absent from ``buildings`` are deleted.
        """
        store = self._require_store()
        report = UpdateReport()
        logger.info("Starting cache update with %s buildings", len(buildings))

        batch_size = max(self.settings.cache_batch_size, 1)
        limiter = asyncio.Semaphore(max(self.settings.max_concurrent_fetches, 1))
        for i in range(0, len(buildings), batch_size):
            batch = buildings[i : i + batch_size]
            await asyncio.gather(*(self._process_building(store, b, limiter, report) for b in batch))

        remote_ids = {b.id for b in buildings}
        cached_ids = await asyncio.to_thread(store.building_ids)
        gone = sorted(cached_ids - remote_ids)
        if gone:
            async with self._write_lock:
                await asyncio.to_thread(store.delete_buildings, gone)
            for bid in gone:
                self._snapshots.pop(bid, None)
            logger.info("Deleted %s cached buildings that no longer exist in source data", len(gone))
        report.deleted = gone

        self.last_report = report
        logger.info(
            "Cache update completed: %s refreshed, %s fresh, %s failed, %s deleted",
            len(report.refreshed),
            len(report.skipped),
            len(report.failed),
            len(report.deleted),
        )
        return report

    async def update_terms_cache(self) -> List[Term]:
        """Replace every cached term with the complete remote term list."""
        store = self._require_store()
        terms = await self.gateway.all_terms()
        await asyncio.to_thread(store.replace_terms, terms, self._now())
        self._snapshots.clear()
        logger.info("Terms cache updated with %s terms", len(terms))
        return terms

    async def current_terms(self, now: Optional[datetime] = None) -> List[Term]:
        """Terms current at ``now``; falls back to the remote list when the cache has none."""
        store = self._require_store()
        now = now or self._now()
        cached = current_terms(now, await asyncio.to_thread(store.terms), self._tz)
        if cached:
            return cached
        terms = await self.update_terms_cache()
        return current_terms(now, terms, self._tz)

    async def clear_cache(self) -> int:
        """Delete every cached building (terms are kept)."""
        store = self._require_store()
        logger.info("User requested cache clear - clearing building cache...")
        count = await asyncio.to_thread(store.clear_buildings)
        self._snapshots.clear()
        logger.info("Building cache cleared successfully (%s buildings)", count)
        return count

    async def refresh(self, force: bool = False, favorite_ids: Iterable[int] = ()) -> List[BuildingSnapshot]:
        """Pull the remote listing into the replica and return fresh snapshots.

        ``force`` clears the building cache once the listing has arrived, so
        every building is fetched again. A failed listing leaves the replica
        untouched.
        """
        self._require_store()
        self.last_report = None
        buildings = await self.gateway.list_buildings()
        if force:
            await self.clear_cache()
        try:
            await self.update_terms_cache()
        except GatewayError as exc:
            logger.warning("Keeping cached terms, term refresh failed: %s", exc)
        await self.update_cache(buildings)
        return await self.load_cached(favorite_ids)
