"""releasecache — FastAPI application entry point.

Admin endpoints for the release result cache: status, recent cached
releases, clearing, and switching the storage backend at runtime.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from releasecache.config import CacheType, Settings, settings as default_settings
from releasecache.schemas import CachedResultView, CacheStatus
from releasecache.services.backends.base import RECENT_RESULTS_LIMIT
from releasecache.services.cache_factory import CacheConfigurationError
from releasecache.services.cache_manager import CacheManager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger("releasecache")


class BackendChange(BaseModel):
    cache_type: CacheType
    connection_string: str = ""


def get_cache_manager(request: Request) -> CacheManager:
    """The cache manager created for this app instance."""
    return request.app.state.cache_manager


def create_app(settings: Settings | None = None, manager: CacheManager | None = None) -> FastAPI:
    settings = settings or default_settings
    logging.getLogger().setLevel(settings.log_level.upper())

    # ═══════════════ LIFESPAN ═══════════════

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = False
        if getattr(app.state, "cache_manager", None) is None:
            app.state.cache_manager = CacheManager(settings.cache_settings())
            await app.state.cache_manager.initialize()
            owned = True
        logger.info("releasecache starting | backend=%s", app.state.cache_manager.cache_type.value)

        yield

        if owned:
            await app.state.cache_manager.close()
        logger.info("releasecache shutting down")

    # ═══════════════ APP ═══════════════

    app = FastAPI(
        title="releasecache API",
        description="Result cache for multi-source release search",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.cache_manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    # ═══════════════ ENDPOINTS ═══════════════

    @app.get("/health")
    async def health(cache: CacheManager = Depends(get_cache_manager)):
        return {
            "status": "ok",
            "cache_type": cache.cache_type.value,
            "cache_ttl": int(cache.ttl().total_seconds()),
        }

    @app.get("/api/cache/status", response_model=CacheStatus)
    async def cache_status(cache: CacheManager = Depends(get_cache_manager)):
        return await cache.get_status()

    @app.get("/api/cache/results", response_model=list[CachedResultView])
    async def cached_results(
        limit: int = Query(RECENT_RESULTS_LIMIT, ge=1, le=RECENT_RESULTS_LIMIT),
        cache: CacheManager = Depends(get_cache_manager),
    ):
        return await cache.get_recent_results(limit)

    @app.delete("/api/cache")
    async def clear_cache(cache: CacheManager = Depends(get_cache_manager)):
        await cache.clear_all()
        return {"cleared": "all"}

    @app.delete("/api/cache/sources/{source_id}")
    async def clear_source_cache(source_id: str, cache: CacheManager = Depends(get_cache_manager)):
        await cache.clear_source(source_id)
        return {"cleared": source_id}

    @app.put("/api/cache/backend")
    async def change_backend(change: BackendChange, cache: CacheManager = Depends(get_cache_manager)):
        try:
            await cache.switch_backend(change.cache_type, change.connection_string)
        except CacheConfigurationError as e:
            logger.warning("Cache backend change rejected | %s", str(e)[:200])
            return JSONResponse(status_code=400, content={"error": str(e)})
        return {
            "cache_type": cache.cache_type.value,
            "cache_ttl": int(cache.ttl().total_seconds()),
        }

    return app


app = create_app()
