"""Live catalog access: paging and favorites.

The cache synchronizer serves the replica; this module serves pages straight
from the remote catalog, for clients that page through buildings before the
replica has been filled, and handles a user's favorites. Snapshots are
computed with the same availability and occupancy rules as cached ones.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Set
from uuid import UUID

from zoneinfo import ZoneInfo

from .cache import compose_snapshot
from .clock import civil_zone, utcnow
from .config import Settings, settings as default_settings
from .gateway import RemoteGateway
from .models import Building, BuildingSnapshot, CatalogPage, FavoriteState, Term

logger = logging.getLogger(__name__)


class CatalogService:
    """Pages of live building snapshots and favorite toggling."""

    def __init__(
        self,
        gateway: RemoteGateway,
        settings: Optional[Settings] = None,
        now: Callable[[], datetime] = utcnow,
        tz: Optional[ZoneInfo] = None,
    ) -> None:
        self.gateway = gateway
        self.settings = settings or default_settings
        self._now = now
        self._tz = tz or civil_zone(self.settings.civil_timezone)
        self._total: Optional[int] = None

    async def total(self, refresh: bool = False) -> int:
        """Exact building count, fetched once and reused."""
        if self._total is None or refresh:
            self._total = await self.gateway.count_buildings()
        return self._total

    async def _favorite_ids(self, user_id: Optional[UUID]) -> Set[int]:
        if user_id is None:
            return set()
        favorites = await self.gateway.favorites_for_user(user_id)
        return {f.building_id for f in favorites}

    async def live_snapshot(
        self, building: Building, terms: List[Term], favorite_ids: Set[int], now: datetime
    ) -> BuildingSnapshot:
        rooms, images, ratings = await asyncio.gather(
            self.gateway.rooms_for_building(building.id),
            self.gateway.images_for_building(building.id),
            self.gateway.ratings_for_building(building.id),
        )
        events = await self.gateway.events_for_rooms([r.id for r in rooms])
        return compose_snapshot(
            building,
            rooms=rooms,
            events=events,
            images=images,
            ratings=ratings,
            terms=terms,
            now=now,
            tz=self._tz,
            favorited=building.id in favorite_ids,
        )

    async def page(self, offset: int = 0, user_id: Optional[UUID] = None) -> CatalogPage:
        """Return ``page_size`` live snapshots starting at ``offset``."""
        now = self._now()
        total = await self.total(refresh=offset == 0)
        buildings, terms, favorite_ids = await asyncio.gather(
            self.gateway.list_buildings(limit=self.settings.page_size, offset=offset),
            self.gateway.all_terms(),
            self._favorite_ids(user_id),
        )
        items = await asyncio.gather(*(self.live_snapshot(b, terms, favorite_ids, now) for b in buildings))
        return CatalogPage(
            items=list(items),
            offset=offset,
            total=total,
            hasMore=offset + len(items) < total,
        )

    async def toggle_favorite(self, user_id: UUID, building_id: int) -> FavoriteState:
        """Add or remove ``building_id`` from the user's favorites and adjust the counter.

        Raises LookupError if the building does not exist remotely.
        """
        building = await self.gateway.get_building(building_id)
        if building is None:
            raise LookupError(f"Building {building_id} not found")

        if building_id in await self._favorite_ids(user_id):
            await self.gateway.remove_favorite(user_id, building_id)
            count = max(building.favorites - 1, 0)
            favorited = False
        else:
            await self.gateway.add_favorite(user_id, building_id)
            count = building.favorites + 1
            favorited = True

        await self.gateway.update_favorite_count(building_id, count)
        logger.info("User %s %s building %s", user_id, "favorited" if favorited else "unfavorited", building_id)
        return FavoriteState(buildingId=building_id, isFavorited=favorited, favorites=count)
