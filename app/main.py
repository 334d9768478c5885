"""Entry point for the FastAPI-powered watchlist comparison service."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .cache import SessionCache
from .config import settings
from .services.comparison import (
    CompareRequest,
    ComparisonService,
    InsufficientOwnersError,
    InvalidOwnersError,
)
from .services.enrichment import EnrichmentClient
from .services.errors import UpstreamError
from .services.letterboxd import LetterboxdClient
from .services.watchlist import WatchlistClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    watchlist_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.watchlist_api_url),
            timeout=httpx.Timeout(30.0, connect=10.0),
        )
    )
    letterboxd_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.letterboxd_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
            follow_redirects=True,
        )
    )
    omdb_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.omdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    tmdb_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )

    cache = SessionCache(settings)
    comparison_service = ComparisonService(
        settings,
        WatchlistClient(settings, watchlist_http),
        LetterboxdClient(settings, letterboxd_http),
        EnrichmentClient(settings, omdb_http, tmdb_http),
        cache,
    )
    fastapi_app.state.comparison_service = comparison_service
    logger.info(
        "Enrichment keys - OMDb: %s, TMDB: %s",
        "found" if settings.omdb_api_key else "missing",
        "found" if settings.tmdb_api_key else "missing",
    )

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await comparison_service.stop()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Find the films your friends all want to watch",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_comparison_service(app: FastAPI) -> ComparisonService:
    service = getattr(app.state, "comparison_service", None)
    if not isinstance(service, ComparisonService):
        raise RuntimeError("Comparison service not initialised")
    return service


def _upstream_http_error(exc: UpstreamError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_payload())


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/watchlist/{username}")
    async def watchlist_endpoint(username: str) -> JSONResponse:
        service = get_comparison_service(fastapi_app)
        try:
            entries = await service.get_catalog(username)
        except UpstreamError as exc:
            raise _upstream_http_error(exc) from exc
        return JSONResponse([entry.to_payload() for entry in entries])

    @fastapi_app.get("/api/profile/{username}")
    async def profile_endpoint(username: str) -> JSONResponse:
        service = get_comparison_service(fastapi_app)
        try:
            profile = await service.lookup_profile(username)
        except UpstreamError as exc:
            raise _upstream_http_error(exc) from exc
        return JSONResponse(profile.model_dump(by_alias=True))

    @fastapi_app.get("/api/following/{username}")
    async def following_endpoint(username: str) -> dict[str, Any]:
        service = get_comparison_service(fastapi_app)
        try:
            connections = await service.get_social_connections(username)
        except UpstreamError as exc:
            raise _upstream_http_error(exc) from exc
        return {
            "following": [
                connection.model_dump(by_alias=True) for connection in connections
            ]
        }

    @fastapi_app.post("/api/compare")
    async def compare_endpoint(request: Request) -> JSONResponse:
        service = get_comparison_service(fastapi_app)
        try:
            payload = await request.json()
        except json.JSONDecodeError:
            payload = None
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")
        try:
            compare_request = CompareRequest.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(
                status_code=400, detail=exc.errors(include_url=False)
            ) from exc

        try:
            comparison = await service.compare(compare_request)
        except InvalidOwnersError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except InsufficientOwnersError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return JSONResponse(comparison.to_payload())

    @fastapi_app.get("/api/compare/{comparison_id}")
    async def comparison_endpoint(comparison_id: str) -> JSONResponse:
        service = get_comparison_service(fastapi_app)
        comparison = service.get_comparison(comparison_id)
        if comparison is None:
            raise HTTPException(status_code=404, detail="Comparison not found")
        return JSONResponse(comparison.to_payload())

    @fastapi_app.delete("/api/compare/{comparison_id}")
    async def cancel_comparison_endpoint(comparison_id: str) -> dict[str, Any]:
        service = get_comparison_service(fastapi_app)
        if service.get_comparison(comparison_id) is None:
            raise HTTPException(status_code=404, detail="Comparison not found")
        return {"cancelled": service.cancel_enrichment(comparison_id)}

    @fastapi_app.get("/api/cache/stats")
    async def cache_stats_endpoint() -> dict[str, int]:
        return get_comparison_service(fastapi_app).cache.stats()

    @fastapi_app.delete("/api/cache")
    async def clear_cache_endpoint() -> dict[str, int]:
        cache = get_comparison_service(fastapi_app).cache
        cache.clear()
        return cache.stats()

    @fastapi_app.delete("/api/cache/enriched")
    async def clear_enriched_cache_endpoint() -> dict[str, int]:
        cache = get_comparison_service(fastapi_app).cache
        cache.clear_enriched()
        return cache.stats()


app = create_app()


def run() -> None:
    """Serve the API with uvicorn on the configured host and port."""

    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":  # pragma: no cover - manual execution
    run()
