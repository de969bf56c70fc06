"""Pydantic data models.

Catalog models mirror the rows of the remote catalog (snake_case columns as
sent by the backend). Response models define what the API hands to the
presentation layer; they are separate from the catalog rows to decouple our
internal representation from the remote schema.
"""

from datetime import date, time
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class CatalogRow(BaseModel):
    """Base for rows read from the remote catalog; unknown columns are ignored."""

    model_config = ConfigDict(extra="ignore")


class Building(CatalogRow):
    id: int
    name: str
    description: Optional[str] = None
    is_available: Optional[bool] = None
    address: Optional[str] = None
    hours: Optional[str] = None
    favorites: int
    comment_count: int
    sorted_id: Optional[int] = None


class Room(CatalogRow):
    id: int
    building_id: int
    room_number: str


class Term(CatalogRow):
    """An academic scheduling period. Sub-sessions overlap their full term."""

    id: int
    year: int
    term: str
    year_term: str
    part_of_term: str
    start_date: date
    end_date: date


class Event(CatalogRow):
    """A recurring occupation of a room on the given weekdays during a term."""

    id: int
    room_id: int
    term_id: int
    name: str = ""
    start_time: time
    end_time: time
    days_of_week: str


class BuildingImage(CatalogRow):
    id: int
    building_id: int
    url: str
    display_order: Optional[int] = None
    is_primary: Optional[bool] = None


class BuildingRating(CatalogRow):
    id: int
    user_id: UUID
    building_id: int
    rating: int
    comment: Optional[str] = None


class BuildingFavorite(CatalogRow):
    id: int
    user_id: UUID
    building_id: int


class BuildingSnapshot(BaseModel):
    """Represents the computed state of a building at a point in time."""

    building: Building
    isOpen: bool
    changesAt: Optional[str] = None
    totalRooms: int
    availableRooms: int
    ratings: List[BuildingRating] = []
    images: List[BuildingImage] = []
    isFavorited: bool = False


class RoomAvailability(BaseModel):
    """Represents the computed state of a single room."""

    roomId: int
    roomNumber: str
    isAvailable: bool
    status: Literal["available", "occupied", "closed"]
    until: Optional[time] = None
    eventName: Optional[str] = None


def sort_images(images: List[BuildingImage]) -> List[BuildingImage]:
    """Primary images first, then by display order."""
    return sorted(images, key=lambda img: (img.is_primary is not True, img.display_order or 0))


class CatalogPage(BaseModel):
    """One page of live building snapshots."""

    items: List[BuildingSnapshot]
    offset: int
    total: int
    hasMore: bool


class FavoriteState(BaseModel):
    buildingId: int
    isFavorited: bool
    favorites: int
