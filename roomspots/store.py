"""SQLite replica of the remote catalog.

The local store is an arena of flat tables keyed by the remote integer ids,
with explicit ``building_id`` foreign keys on every dependent row:

    buildings          one row per building, plus ``last_updated``
    rooms              building_id -> buildings.id
    building_images    building_id -> buildings.id
    building_ratings   building_id -> buildings.id
    events             room_id -> rooms.id (building_id denormalised)
    terms              full-replace table, no staleness timestamp needed

Columns of catalog fields are nullable on purpose: rows are validated when
they are read back, and a row that lacks a required field is skipped rather
than failing the whole read.

Every public write runs in its own transaction. ``upsert_building`` writes a
building and all of its dependents in one transaction, so readers observe
either the old or the new state of a building, never a mix.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set

from pydantic import ValidationError

from .models import Building, BuildingImage, BuildingRating, Event, Room, Term

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS buildings (
      id INTEGER PRIMARY KEY,
      name TEXT,
      description TEXT,
      is_available INTEGER,
      address TEXT,
      hours TEXT,
      favorites INTEGER,
      comment_count INTEGER,
      sorted_id INTEGER,
      last_updated TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS rooms (
      id INTEGER PRIMARY KEY,
      building_id INTEGER NOT NULL,
      room_number TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS building_images (
      id INTEGER PRIMARY KEY,
      building_id INTEGER NOT NULL,
      url TEXT,
      display_order INTEGER,
      is_primary INTEGER
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS building_ratings (
      id INTEGER PRIMARY KEY,
      building_id INTEGER NOT NULL,
      user_id TEXT,
      rating INTEGER,
      comment TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
      id INTEGER PRIMARY KEY,
      building_id INTEGER NOT NULL,
      room_id INTEGER NOT NULL,
      term_id INTEGER,
      name TEXT,
      start_time TEXT,
      end_time TEXT,
      days_of_week TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS terms (
      id INTEGER PRIMARY KEY,
      year INTEGER,
      term TEXT,
      year_term TEXT,
      part_of_term TEXT,
      start_date TEXT,
      end_date TEXT,
      last_updated TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_buildings_sorted ON buildings(sorted_id)",
    "CREATE INDEX IF NOT EXISTS idx_rooms_building ON rooms(building_id)",
    "CREATE INDEX IF NOT EXISTS idx_images_building ON building_images(building_id)",
    "CREATE INDEX IF NOT EXISTS idx_ratings_building ON building_ratings(building_id)",
    "CREATE INDEX IF NOT EXISTS idx_events_building ON events(building_id)",
)

# Dependent tables, deleted by foreign-key scan when a building goes away.
_CHILD_TABLES = ("rooms", "building_images", "building_ratings", "events")


def _iso(ts: Optional[datetime]) -> Optional[str]:
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat()


def _parse_ts(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        ts = datetime.fromisoformat(raw)
    except ValueError:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def _bool(raw: Any) -> Optional[bool]:
    return None if raw is None else bool(raw)


@dataclass
class CachedBuilding:
    """A cached building row with its dependents, as stored (fields may be missing)."""

    id: Optional[int]
    name: Optional[str]
    description: Optional[str] = None
    is_available: Optional[bool] = None
    address: Optional[str] = None
    hours: Optional[str] = None
    favorites: Optional[int] = None
    comment_count: Optional[int] = None
    sorted_id: Optional[int] = None
    last_updated: Optional[datetime] = None
    rooms: List[Room] = field(default_factory=list)
    images: List[BuildingImage] = field(default_factory=list)
    ratings: List[BuildingRating] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)

    def to_building(self) -> Optional[Building]:
        """Return the catalog model, or None when a required field is missing."""
        if self.id is None or self.name is None or self.favorites is None or self.comment_count is None:
            return None
        return Building(
            id=self.id,
            name=self.name,
            description=self.description,
            is_available=self.is_available,
            address=self.address,
            hours=self.hours,
            favorites=self.favorites,
            comment_count=self.comment_count,
            sorted_id=self.sorted_id,
        )


def _validated(model, rows: Iterable[sqlite3.Row]) -> List[Any]:
    out = []
    for row in rows:
        data = {k: row[k] for k in row.keys() if row[k] is not None}
        try:
            out.append(model.model_validate(data))
        except ValidationError as exc:
            logger.warning("Skipping cached %s row %s: %s", model.__name__, data.get("id"), exc.error_count())
    return out


class LocalStore:
    """SQLite-backed store; one short-lived connection per operation."""

    def __init__(self, db_path: str = "roomspots.db") -> None:
        self.db_path = db_path
        self.init_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Connection that commits on success and rolls back on any error."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_schema(self) -> None:
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    # Reads

    def _building_from_row(self, row: sqlite3.Row) -> CachedBuilding:
        return CachedBuilding(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            is_available=_bool(row["is_available"]),
            address=row["address"],
            hours=row["hours"],
            favorites=row["favorites"],
            comment_count=row["comment_count"],
            sorted_id=row["sorted_id"],
            last_updated=_parse_ts(row["last_updated"]),
        )

    def get_building(self, building_id: int) -> Optional[CachedBuilding]:
        """Return the cached building row (without dependents), if any."""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM buildings WHERE id = ?", (building_id,)).fetchone()
        return self._building_from_row(row) if row else None

    def building_ids(self) -> Set[int]:
        with self._connect() as conn:
            return {row["id"] for row in conn.execute("SELECT id FROM buildings")}

    def _load(self, conn: sqlite3.Connection, building_id: Optional[int] = None) -> List[CachedBuilding]:
        if building_id is None:
            where, child_where, args = "", "", ()
        else:
            where, child_where, args = "WHERE id = ?", "WHERE building_id = ?", (building_id,)
        buildings = [
            self._building_from_row(row)
            for row in conn.execute(
                f"SELECT * FROM buildings {where} ORDER BY sorted_id IS NULL, sorted_id, id", args
            )
        ]
        if not buildings:
            return []

        def grouped(model, table: str, columns: str, order: str) -> Dict[int, List[Any]]:
            rows = conn.execute(f"SELECT {columns} FROM {table} {child_where} ORDER BY {order}", args).fetchall()
            by_building: Dict[int, List[sqlite3.Row]] = defaultdict(list)
            for row in rows:
                by_building[row["building_id"]].append(row)
            return {bid: _validated(model, group) for bid, group in by_building.items()}

        rooms = grouped(Room, "rooms", "*", "room_number, id")
        images = grouped(BuildingImage, "building_images", "*", "display_order, id")
        ratings = grouped(BuildingRating, "building_ratings", "*", "id")
        events = grouped(Event, "events", "*", "id")
        for b in buildings:
            b.rooms = rooms.get(b.id, [])
            b.images = images.get(b.id, [])
            b.ratings = ratings.get(b.id, [])
            b.events = events.get(b.id, [])
        return buildings

    def load_all(self) -> List[CachedBuilding]:
        """Every cached building joined with its dependents, ordered by ``sorted_id``."""
        with self._connect() as conn:
            return self._load(conn)

    def load_one(self, building_id: int) -> Optional[CachedBuilding]:
        with self._connect() as conn:
            found = self._load(conn, building_id)
        return found[0] if found else None

    def terms(self) -> List[Term]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM terms ORDER BY start_date, id").fetchall()
        return _validated(Term, rows)

    # Writes

    def upsert_building(
        self,
        building: Building,
        rooms: List[Room],
        images: List[BuildingImage],
        ratings: List[BuildingRating],
        events: List[Event],
        last_updated: datetime,
    ) -> bool:
        """Insert or update ``building`` and replace its dependents in one transaction.

        Returns True if the building already existed.
        """
        with self._connect() as conn:
            existed = conn.execute("SELECT 1 FROM buildings WHERE id = ?", (building.id,)).fetchone() is not None
            conn.execute(
                """
                INSERT INTO buildings (id, name, description, is_available, address, hours,
                                       favorites, comment_count, sorted_id, last_updated)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  name = excluded.name,
                  description = excluded.description,
                  is_available = excluded.is_available,
                  address = excluded.address,
                  hours = excluded.hours,
                  favorites = excluded.favorites,
                  comment_count = excluded.comment_count,
                  sorted_id = excluded.sorted_id,
                  last_updated = excluded.last_updated
                """,
                (
                    building.id,
                    building.name,
                    building.description,
                    None if building.is_available is None else int(building.is_available),
                    building.address,
                    building.hours,
                    building.favorites,
                    building.comment_count,
                    building.sorted_id,
                    _iso(last_updated),
                ),
            )
            for table in _CHILD_TABLES:
                conn.execute(f"DELETE FROM {table} WHERE building_id = ?", (building.id,))
            conn.executemany(
                "INSERT OR REPLACE INTO rooms (id, building_id, room_number) VALUES (?, ?, ?)",
                [(r.id, building.id, r.room_number) for r in rooms],
            )
            conn.executemany(
                "INSERT OR REPLACE INTO building_images (id, building_id, url, display_order, is_primary) "
                "VALUES (?, ?, ?, ?, ?)",
                [
                    (i.id, building.id, i.url, i.display_order, None if i.is_primary is None else int(i.is_primary))
                    for i in images
                ],
            )
            conn.executemany(
                "INSERT OR REPLACE INTO building_ratings (id, building_id, user_id, rating, comment) "
                "VALUES (?, ?, ?, ?, ?)",
                [(r.id, building.id, str(r.user_id), r.rating, r.comment) for r in ratings],
            )
            conn.executemany(
                "INSERT OR REPLACE INTO events (id, building_id, room_id, term_id, name, start_time, end_time, "
                "days_of_week) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        e.id,
                        building.id,
                        e.room_id,
                        e.term_id,
                        e.name,
                        e.start_time.isoformat(),
                        e.end_time.isoformat(),
                        e.days_of_week,
                    )
                    for e in events
                ],
            )
        return existed

    def delete_buildings(self, building_ids: Iterable[int]) -> int:
        """Delete buildings and, by foreign-key scan, all of their dependents."""
        ids = [(bid,) for bid in building_ids]
        if not ids:
            return 0
        with self._connect() as conn:
            for table in _CHILD_TABLES:
                conn.executemany(f"DELETE FROM {table} WHERE building_id = ?", ids)
            conn.executemany("DELETE FROM buildings WHERE id = ?", ids)
        return len(ids)

    def clear_buildings(self) -> int:
        """Delete every cached building and dependent row. Terms are kept."""
        with self._connect() as conn:
            count = conn.execute("SELECT COUNT(*) FROM buildings").fetchone()[0]
            for table in _CHILD_TABLES:
                conn.execute(f"DELETE FROM {table}")
            conn.execute("DELETE FROM buildings")
        return count

    def replace_terms(self, terms: List[Term], last_updated: datetime) -> None:
        """Clear all cached terms and insert ``terms`` in one transaction."""
        with self._connect() as conn:
            conn.execute("DELETE FROM terms")
            conn.executemany(
                "INSERT INTO terms (id, year, term, year_term, part_of_term, start_date, end_date, last_updated) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        t.id,
                        t.year,
                        t.term,
                        t.year_term,
                        t.part_of_term,
                        t.start_date.isoformat(),
                        t.end_date.isoformat(),
                        _iso(last_updated),
                    )
                    for t in terms
                ],
            )
