from __future__ import annotations

import asyncio
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Iterable, List, Optional
from uuid import UUID, uuid4

import pytest

from roomspots.clock import civil_zone
from roomspots.config import Settings
from roomspots.gateway import GatewayRequestError
from roomspots.models import (
    Building,
    BuildingFavorite,
    BuildingImage,
    BuildingRating,
    Event,
    Room,
    Term,
)
from roomspots.store import LocalStore

CHICAGO = civil_zone("America/Chicago")

WEEK_HOURS = (
    "Monday: 7:00 AM - 11:00 PM; Tuesday: 7:00 AM - 11:00 PM; Wednesday: 7:00 AM - 11:00 PM; "
    "Thursday: 7:00 AM - 11:00 PM; Friday: 7:00 AM - 6:00 PM; Saturday: Closed; Sunday: Closed"
)


def make_building(building_id: int, hours: Optional[str] = WEEK_HOURS, **kw) -> Building:
    data = dict(
        id=building_id,
        name=f"Building {building_id}",
        hours=hours,
        favorites=0,
        comment_count=0,
        sorted_id=building_id,
    )
    data.update(kw)
    return Building(**data)


def make_term(term_id: int, start: date, end: date, part: str = "1") -> Term:
    return Term(
        id=term_id,
        year=start.year,
        term="Spring",
        year_term=f"{start.year}-sp",
        part_of_term=part,
        start_date=start,
        end_date=end,
    )


def make_event(event_id: int, room_id: int, term_id: int = 1, days: str = "MWF",
               start: time = time(9, 0), end: time = time(9, 50), name: str = "CS 101") -> Event:
    return Event(
        id=event_id,
        room_id=room_id,
        term_id=term_id,
        name=name,
        start_time=start,
        end_time=end,
        days_of_week=days,
    )


SPRING = make_term(1, date(2025, 1, 1), date(2025, 5, 15))

# Monday 3 February 2025, 09:30 in Chicago (CST, UTC-6)
MONDAY_0930 = datetime(2025, 2, 3, 9, 30, tzinfo=CHICAGO)


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw) -> None:
        self.now = self.now + timedelta(**kw)


class FakeGateway:
    """In-memory stand-in for the remote catalog."""

    def __init__(self) -> None:
        self.buildings: Dict[int, Building] = {}
        self.rooms: Dict[int, List[Room]] = {}
        self.events: List[Event] = []
        self.images: Dict[int, List[BuildingImage]] = {}
        self.ratings: Dict[int, List[BuildingRating]] = {}
        self.terms: List[Term] = []
        self.favorites: List[BuildingFavorite] = []
        self.fail_for: set[int] = set()
        self.fail_listing = False
        self.calls: list[tuple[str, object]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def add(self, building: Building, rooms: Iterable[Room] = (), events: Iterable[Event] = ()) -> None:
        self.buildings[building.id] = building
        self.rooms[building.id] = list(rooms)
        self.events.extend(events)

    async def list_buildings(self, limit: Optional[int] = None, offset: int = 0) -> List[Building]:
        self.calls.append(("list_buildings", (limit, offset)))
        if self.fail_listing:
            raise GatewayRequestError("GET buildings: HTTP 500")
        ordered = sorted(self.buildings.values(), key=lambda b: b.sorted_id or 0)
        if limit is None:
            return ordered
        return ordered[offset : offset + limit]

    async def count_buildings(self) -> int:
        return len(self.buildings)

    async def get_building(self, building_id: int) -> Optional[Building]:
        return self.buildings.get(building_id)

    async def rooms_for_building(self, building_id: int) -> List[Room]:
        self.calls.append(("rooms_for_building", building_id))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            if building_id in self.fail_for:
                raise GatewayRequestError(f"GET rooms: HTTP 500 for {building_id}")
            return list(self.rooms.get(building_id, []))
        finally:
            self.in_flight -= 1

    async def events_for_rooms(self, room_ids: Iterable[int]) -> List[Event]:
        ids = set(room_ids)
        return [e for e in self.events if e.room_id in ids]

    async def images_for_building(self, building_id: int) -> List[BuildingImage]:
        return list(self.images.get(building_id, []))

    async def ratings_for_building(self, building_id: int) -> List[BuildingRating]:
        return list(self.ratings.get(building_id, []))

    async def all_terms(self) -> List[Term]:
        self.calls.append(("all_terms", None))
        return list(self.terms)

    async def favorites_for_user(self, user_id: UUID) -> List[BuildingFavorite]:
        return [f for f in self.favorites if f.user_id == user_id]

    async def add_favorite(self, user_id: UUID, building_id: int) -> BuildingFavorite:
        fav = BuildingFavorite(id=len(self.favorites) + 1, user_id=user_id, building_id=building_id)
        self.favorites.append(fav)
        return fav

    async def remove_favorite(self, user_id: UUID, building_id: int) -> None:
        self.favorites = [
            f for f in self.favorites if not (f.user_id == user_id and f.building_id == building_id)
        ]

    async def update_favorite_count(self, building_id: int, count: int) -> None:
        b = self.buildings[building_id]
        self.buildings[building_id] = b.model_copy(update={"favorites": count})

    def fetched(self) -> List[int]:
        return [arg for name, arg in self.calls if name == "rooms_for_building"]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        civil_timezone="America/Chicago",
        cache_freshness_hours=24,
        cache_batch_size=10,
        max_concurrent_fetches=4,
        page_size=2,
    )


@pytest.fixture
def store(tmp_path) -> LocalStore:
    return LocalStore(str(tmp_path / "cache.db"))


@pytest.fixture
def gateway() -> FakeGateway:
    gw = FakeGateway()
    gw.terms = [SPRING]
    gw.add(
        make_building(1),
        rooms=[Room(id=10, building_id=1, room_number="101"), Room(id=11, building_id=1, room_number="102")],
        events=[make_event(100, room_id=10)],
    )
    gw.add(make_building(2), rooms=[Room(id=20, building_id=2, room_number="201")])
    gw.add(make_building(3), rooms=[Room(id=30, building_id=3, room_number="301")])
    gw.images[1] = [
        BuildingImage(id=1, building_id=1, url="https://img/1b.jpg", display_order=2),
        BuildingImage(id=2, building_id=1, url="https://img/1a.jpg", display_order=5, is_primary=True),
    ]
    gw.ratings[1] = [BuildingRating(id=1, user_id=uuid4(), building_id=1, rating=5, comment="quiet")]
    return gw


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(MONDAY_0930.astimezone(timezone.utc))
