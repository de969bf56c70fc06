"""Remote catalog gateway.

The cache synchronizer and the catalog service only ever talk to the remote
backend through the ``RemoteGateway`` protocol below: filtered reads over
named collections plus the few writes needed for favorites. Tests substitute
in-memory fakes; production uses ``PostgrestGateway``, an async httpx client
for a PostgREST (Supabase) project.

Transient failures (429 and 5xx) are retried with exponential back-off.
Singleton lookups that find nothing return ``None`` or an empty list rather
than raising. Everything else surfaces as a ``GatewayError`` subclass.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol
from uuid import UUID

import httpx

from .config import Settings, settings as default_settings
from .models import Building, BuildingFavorite, BuildingImage, BuildingRating, Event, Room, Term

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = (429, 500, 502, 503, 504)


class GatewayError(Exception):
    """Base error for remote catalog failures."""


class GatewayAuthError(GatewayError):
    """Raised when the backend rejects our key."""


class GatewayNotFoundError(GatewayError):
    """Raised when a collection or row does not exist."""


class GatewayConnectionError(GatewayError):
    """Raised when the backend cannot be reached."""


class GatewayRequestError(GatewayError):
    """Raised for any other non-success response."""


class RemoteGateway(Protocol):
    """What the synchronizer and catalog need from the remote backend."""

    async def list_buildings(self, limit: Optional[int] = None, offset: int = 0) -> List[Building]: ...

    async def count_buildings(self) -> int: ...

    async def get_building(self, building_id: int) -> Optional[Building]: ...

    async def rooms_for_building(self, building_id: int) -> List[Room]: ...

    async def events_for_rooms(self, room_ids: Iterable[int]) -> List[Event]: ...

    async def images_for_building(self, building_id: int) -> List[BuildingImage]: ...

    async def ratings_for_building(self, building_id: int) -> List[BuildingRating]: ...

    async def all_terms(self) -> List[Term]: ...

    async def favorites_for_user(self, user_id: UUID) -> List[BuildingFavorite]: ...

    async def add_favorite(self, user_id: UUID, building_id: int) -> BuildingFavorite: ...

    async def remove_favorite(self, user_id: UUID, building_id: int) -> None: ...

    async def update_favorite_count(self, building_id: int, count: int) -> None: ...


def eq(value: Any) -> str:
    """PostgREST equality filter."""
    return f"eq.{value}"


def in_(values: Iterable[Any]) -> str:
    """PostgREST set-membership filter."""
    return "in.(" + ",".join(str(v) for v in values) + ")"


def _parse_total(content_range: Optional[str]) -> int:
    # "0-24/312" or "*/0"
    if not content_range or "/" not in content_range:
        return 0
    total = content_range.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else 0


class PostgrestGateway:
    """Async client for the catalog tables exposed under ``/rest/v1``."""

    def __init__(self, settings: Settings | None = None, http: httpx.AsyncClient | None = None) -> None:
        self.settings = settings or default_settings
        key = self.settings.supabase_key
        self.http = http or httpx.AsyncClient(
            base_url=self.settings.supabase_url.rstrip("/") + "/rest/v1",
            headers={"apikey": key, "Authorization": f"Bearer {key}"},
            timeout=self.settings.http_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _request(
        self,
        method: str,
        table: str,
        *,
        params: Dict[str, Any] | None = None,
        json: Any = None,
        headers: Dict[str, str] | None = None,
    ) -> httpx.Response:
        max_retries = self.settings.http_max_retries
        attempt = 0
        while True:
            try:
                response = await self.http.request(method, f"/{table}", params=params, json=json, headers=headers)
            except httpx.TransportError as exc:
                attempt += 1
                if attempt <= max_retries:
                    delay = self.settings.http_backoff_seconds * (2 ** (attempt - 1))
                    logger.warning(
                        "%s %s transport error (%s), retrying in %.1fs (attempt %s/%s)",
                        method, table, exc, delay, attempt, max_retries,
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error("%s %s failed after %s attempts: %s", method, table, attempt, exc)
                raise GatewayConnectionError(f"{method} {table}: {exc}") from exc

            status = response.status_code
            if status in TRANSIENT_STATUSES and attempt < max_retries:
                attempt += 1
                delay = self.settings.http_backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "%s %s transient error (status=%s), retrying in %.1fs (attempt %s/%s)",
                    method, table, status, delay, attempt, max_retries,
                )
                await asyncio.sleep(delay)
                continue

            if status in (401, 403):
                raise GatewayAuthError(f"{method} {table}: HTTP {status}")
            # 406 is PostgREST's answer to a singular request matching no row
            if status in (404, 406):
                raise GatewayNotFoundError(f"{method} {table}: HTTP {status}")
            if status >= 400:
                logger.error("%s %s failed: HTTP %s %s", method, table, status, response.text[:200])
                raise GatewayRequestError(f"{method} {table}: HTTP {status}")
            return response

    async def _select(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        response = await self._request("GET", table, params={"select": "*", **params})
        data = response.json()
        return data if isinstance(data, list) else [data]

    # Buildings

    async def list_buildings(self, limit: Optional[int] = None, offset: int = 0) -> List[Building]:
        params: Dict[str, Any] = {"order": "sorted_id.asc"}
        if limit is not None:
            params["limit"] = limit
            params["offset"] = offset
        rows = await self._select("buildings", params)
        return [Building.model_validate(r) for r in rows]

    async def count_buildings(self) -> int:
        response = await self._request(
            "HEAD", "buildings", params={"select": "id"}, headers={"Prefer": "count=exact"}
        )
        return _parse_total(response.headers.get("content-range"))

    async def get_building(self, building_id: int) -> Optional[Building]:
        try:
            response = await self._request(
                "GET",
                "buildings",
                params={"select": "*", "id": eq(building_id)},
                headers={"Accept": "application/vnd.pgrst.object+json"},
            )
        except GatewayNotFoundError:
            return None
        return Building.model_validate(response.json())

    # Building details

    async def rooms_for_building(self, building_id: int) -> List[Room]:
        rows = await self._select("rooms", {"building_id": eq(building_id), "order": "room_number.asc"})
        return [Room.model_validate(r) for r in rows]

    async def events_for_rooms(self, room_ids: Iterable[int]) -> List[Event]:
        ids = sorted(set(room_ids))
        if not ids:
            return []
        rows = await self._select("events", {"room_id": in_(ids)})
        return [Event.model_validate(r) for r in rows]

    async def images_for_building(self, building_id: int) -> List[BuildingImage]:
        rows = await self._select("building_images", {"building_id": eq(building_id), "order": "display_order.asc"})
        return [BuildingImage.model_validate(r) for r in rows]

    async def ratings_for_building(self, building_id: int) -> List[BuildingRating]:
        rows = await self._select("building_ratings", {"building_id": eq(building_id)})
        return [BuildingRating.model_validate(r) for r in rows]

    async def all_terms(self) -> List[Term]:
        rows = await self._select("terms", {"order": "start_date.asc"})
        return [Term.model_validate(r) for r in rows]

    # Favorites

    async def favorites_for_user(self, user_id: UUID) -> List[BuildingFavorite]:
        try:
            rows = await self._select("building_favorites", {"user_id": eq(user_id)})
        except GatewayNotFoundError:
            return []
        return [BuildingFavorite.model_validate(r) for r in rows]

    async def add_favorite(self, user_id: UUID, building_id: int) -> BuildingFavorite:
        response = await self._request(
            "POST",
            "building_favorites",
            json={"user_id": str(user_id), "building_id": building_id},
            headers={"Prefer": "return=representation"},
        )
        data = response.json()
        row = data[0] if isinstance(data, list) else data
        return BuildingFavorite.model_validate(row)

    async def remove_favorite(self, user_id: UUID, building_id: int) -> None:
        await self._request(
            "DELETE",
            "building_favorites",
            params={"user_id": eq(user_id), "building_id": eq(building_id)},
        )

    async def update_favorite_count(self, building_id: int, count: int) -> None:
        await self._request(
            "PATCH",
            "buildings",
            params={"id": eq(building_id)},
            json={"favorites": count},
        )
