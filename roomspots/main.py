"""Main application entry point for the study-space service.

This module defines the FastAPI application, configures logging and owns the
lifecycle of the service objects: the remote gateway, the SQLite replica and
the cache synchronizer are constructed here and handed to each other
explicitly. Presentation clients read building snapshots from the replica;
refreshing the replica from the remote catalog is an explicit operation.

Endpoints:
  - ``/api/buildings``: snapshots of every cached building.
  - ``/api/buildings/{id}``: snapshot of one cached building.
  - ``/api/buildings/{id}/rooms``: per-room availability for one building.
  - ``/api/catalog``: a live page of buildings straight from the remote catalog.
  - ``/api/refresh``: pull the remote catalog into the replica.
  - ``/api/cache``: clear the building replica (DELETE).
  - ``/api/terms/current``: the academic terms in effect right now.
  - ``/api/favorites/{id}``: toggle a building in a user's favorites (POST).
  - ``/healthz``: simple health check endpoint.

Refresh failures are captured and surfaced via the ``lastError`` field while
the last good cached snapshots keep being served.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .cache import CacheNotConfiguredError, CacheSynchronizer
from .catalog import CatalogService
from .clock import utcnow
from .config import Settings, settings as default_settings
from .gateway import GatewayError, PostgrestGateway, RemoteGateway
from .models import CatalogPage, FavoriteState, RoomAvailability, Term
from .store import LocalStore

logger = logging.getLogger("roomspots")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")


def _iso_now() -> str:
    return utcnow().isoformat().replace("+00:00", "Z")


def create_app(
    gateway: Optional[RemoteGateway] = None,
    store: Optional[LocalStore] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the application around explicitly constructed service objects."""
    settings = settings or default_settings
    gateway = gateway or PostgrestGateway(settings)
    sync = CacheSynchronizer(gateway, store=store, settings=settings)
    catalog = CatalogService(gateway, settings=settings)
    status: Dict[str, Any] = {"last_error": None, "last_refresh_at": None}
    refresh_lock = asyncio.Lock()

    async def _run_refresh(force: bool = False, favorite_ids: Optional[set] = None) -> Dict[str, Any]:
        async with refresh_lock:
            try:
                snapshots = await sync.refresh(force=force, favorite_ids=favorite_ids or ())
                report = sync.last_report
                status["last_error"] = None
                status["last_refresh_at"] = _iso_now()
            except CacheNotConfiguredError:
                raise
            except Exception as exc:
                logger.exception("Error refreshing cache: %s", exc)
                status["last_error"] = f"REFRESH_ERROR: {exc}"
                # Serve the last good replica with the error attached
                snapshots = await sync.load_cached(favorite_ids or ())
                report = None
        return {
            "generatedAt": _iso_now(),
            "count": len(snapshots),
            "items": [s.model_dump(mode="json") for s in snapshots],
            "report": asdict(report) if report else None,
            "lastError": status["last_error"],
        }

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not sync.is_configured:
            sync.configure(LocalStore(settings.cache_db_path))
        task = None
        if settings.refresh_on_startup:
            task = asyncio.create_task(_run_refresh())
        yield
        if task is not None and not task.done():
            task.cancel()
        aclose = getattr(gateway, "aclose", None)
        if aclose is not None:
            await aclose()

    app = FastAPI(title="Study Space Service", lifespan=lifespan)
    app.state.sync = sync
    app.state.catalog = catalog

    @app.exception_handler(CacheNotConfiguredError)
    async def not_configured(request: Request, exc: CacheNotConfiguredError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    async def _favorite_ids(user_id: Optional[UUID]) -> set:
        if user_id is None:
            return set()
        try:
            return {f.building_id for f in await gateway.favorites_for_user(user_id)}
        except GatewayError as exc:
            # Favorites only decorate snapshots; the replica is still served
            logger.warning("Could not load favorites for %s: %s", user_id, exc)
            return set()

    @app.get("/api/buildings")
    async def api_buildings(user_id: Optional[UUID] = None) -> Dict[str, Any]:
        """Return snapshots of every cached building."""
        snapshots = await sync.load_cached(await _favorite_ids(user_id))
        return {
            "generatedAt": _iso_now(),
            "count": len(snapshots),
            "items": [s.model_dump(mode="json") for s in snapshots],
            "lastRefreshAt": status["last_refresh_at"],
            "lastError": status["last_error"],
        }

    @app.get("/api/buildings/{building_id}")
    async def api_building(building_id: int) -> Dict[str, Any]:
        snapshot = await sync.snapshot(building_id)
        if snapshot is None:
            raise HTTPException(status_code=404, detail=f"Building {building_id} is not cached")
        return snapshot.model_dump(mode="json")

    @app.get("/api/buildings/{building_id}/rooms", response_model=List[RoomAvailability])
    async def api_building_rooms(building_id: int) -> List[RoomAvailability]:
        rooms = await sync.rooms(building_id)
        if rooms is None:
            raise HTTPException(status_code=404, detail=f"Building {building_id} is not cached")
        return rooms

    @app.get("/api/catalog", response_model=CatalogPage)
    async def api_catalog(offset: int = 0, user_id: Optional[UUID] = None) -> CatalogPage:
        """Return a live page of buildings from the remote catalog."""
        try:
            return await catalog.page(offset=max(offset, 0), user_id=user_id)
        except GatewayError as exc:
            logger.exception("Error loading catalog page: %s", exc)
            raise HTTPException(status_code=502, detail=str(exc))

    @app.post("/api/refresh")
    async def api_refresh(force: bool = False, user_id: Optional[UUID] = None) -> Dict[str, Any]:
        """Refresh the replica from the remote catalog and return fresh snapshots."""
        return await _run_refresh(force=force, favorite_ids=await _favorite_ids(user_id))

    @app.delete("/api/cache")
    async def api_clear_cache() -> Dict[str, Any]:
        try:
            cleared = await sync.clear_cache()
        except CacheNotConfiguredError:
            raise
        except Exception as exc:
            logger.exception("Error clearing cache: %s", exc)
            raise HTTPException(status_code=500, detail=f"Failed to clear cache: {exc}")
        return {"cleared": cleared}

    @app.get("/api/terms/current", response_model=List[Term])
    async def api_current_terms() -> List[Term]:
        try:
            return await sync.current_terms()
        except GatewayError as exc:
            logger.exception("Error resolving current terms: %s", exc)
            raise HTTPException(status_code=502, detail=str(exc))

    @app.post("/api/favorites/{building_id}", response_model=FavoriteState)
    async def api_toggle_favorite(building_id: int, user_id: UUID) -> FavoriteState:
        try:
            return await catalog.toggle_favorite(user_id, building_id)
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc))
        except GatewayError as exc:
            logger.exception("Error toggling favorite: %s", exc)
            raise HTTPException(status_code=502, detail=str(exc))

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        """Health check endpoint for monitoring."""
        return {"ok": True, "time": _iso_now()}

    return app


app = create_app()
