"""Entry point for the FastAPI-powered MovieZ service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import Field
from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .database import Database
from .models import (
    CandidateItem,
    ContentType,
    ExplicitPreferences,
    InteractionRecord,
    SessionContext,
)
from .results import FetchResult
from .services.genres import GenreResolver
from .services.interactions import InteractionStore, MediaRef
from .services.recommender import RecommendationEngine
from .services.tmdb import BACKDROP_BASE_URL, POSTER_BASE_URL, TMDBClient, build_image_url

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@dataclass(slots=True)
class Services:
    """Collaborators shared by the request handlers."""

    tmdb: TMDBClient
    store: InteractionStore
    engine: RecommendationEngine
    genres: GenreResolver


class RatingPayload(MediaRef):
    rating: int = Field(ge=1, le=5)


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    tmdb_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.tmdb_api_url).rstrip("/"),
            timeout=httpx.Timeout(settings.request_timeout_seconds, connect=5.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    if not settings.tmdb_configured:
        logger.warning("TMDB_API_KEY is not set; catalog requests will fail")

    tmdb = TMDBClient(settings, tmdb_http_client)
    store = InteractionStore(database.session_factory)
    genres = GenreResolver(tmdb)
    engine = RecommendationEngine(tmdb, store, genres, settings)

    fastapi_app.state.services = Services(tmdb=tmdb, store=store, engine=engine, genres=genres)
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Movie and TV discovery with personalised recommendations",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_services(fastapi_app: FastAPI) -> Services:
    services = getattr(fastapi_app.state, "services", None)
    if not isinstance(services, Services):
        raise RuntimeError("Services not initialised")
    return services


def register_routes(fastapi_app: FastAPI) -> None:
    def _session(user_id: str) -> SessionContext:
        try:
            return SessionContext(user_id=user_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/users/{user_id}/recommendations")
    async def recommendations(user_id: str) -> dict[str, Any]:
        services = get_services(fastapi_app)
        items = await services.engine.recommend(_session(user_id))
        return {"results": [_serialise_candidate(item) for item in items]}

    @fastapi_app.get("/users/{user_id}/preferences")
    async def preference_profile(user_id: str) -> dict[str, Any]:
        services = get_services(fastapi_app)
        profile = await services.engine.profile_for(_session(user_id))
        return profile.model_dump(mode="json")

    @fastapi_app.put("/users/{user_id}/preferences")
    async def update_preferences(user_id: str, payload: ExplicitPreferences) -> dict[str, Any]:
        services = get_services(fastapi_app)
        try:
            stored = await services.store.set_explicit_preferences(_session(user_id), payload)
        except SQLAlchemyError as exc:
            raise _store_unavailable(exc) from exc
        return stored.model_dump(mode="json")

    @fastapi_app.get("/users/{user_id}/history")
    async def watch_history(
        user_id: str, limit: int | None = Query(default=None, ge=1, le=500)
    ) -> dict[str, Any]:
        services = get_services(fastapi_app)
        result = await services.store.list_watched(_session(user_id), limit=limit)
        return {"results": _records_or_503(result)}

    @fastapi_app.post("/users/{user_id}/history", status_code=201)
    async def record_watch(user_id: str, payload: MediaRef) -> dict[str, Any]:
        services = get_services(fastapi_app)
        try:
            record = await services.store.record_watch(_session(user_id), payload)
        except SQLAlchemyError as exc:
            raise _store_unavailable(exc) from exc
        return record.model_dump(mode="json")

    @fastapi_app.get("/users/{user_id}/ratings")
    async def ratings(
        user_id: str,
        limit: int | None = Query(default=None, ge=1, le=500),
        min_rating: int | None = Query(default=None, ge=1, le=5),
    ) -> dict[str, Any]:
        services = get_services(fastapi_app)
        result = await services.store.list_ratings(
            _session(user_id), limit=limit, min_rating=min_rating
        )
        return {"results": _records_or_503(result)}

    @fastapi_app.post("/users/{user_id}/ratings", status_code=201)
    async def rate(user_id: str, payload: RatingPayload) -> dict[str, Any]:
        services = get_services(fastapi_app)
        media = MediaRef.model_validate(payload.model_dump(exclude={"rating"}))
        try:
            record = await services.store.rate(_session(user_id), media, payload.rating)
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        except SQLAlchemyError as exc:
            raise _store_unavailable(exc) from exc
        return record.model_dump(mode="json")

    @fastapi_app.get("/users/{user_id}/watchlist")
    async def watchlist(
        user_id: str, limit: int | None = Query(default=None, ge=1, le=500)
    ) -> dict[str, Any]:
        services = get_services(fastapi_app)
        result = await services.store.list_watchlist(_session(user_id), limit=limit)
        return {"results": _records_or_503(result)}

    @fastapi_app.post("/users/{user_id}/watchlist")
    async def toggle_watchlist(user_id: str, payload: MediaRef) -> dict[str, Any]:
        services = get_services(fastapi_app)
        try:
            queued = await services.store.toggle_watchlist(_session(user_id), payload)
        except SQLAlchemyError as exc:
            raise _store_unavailable(exc) from exc
        return {
            "content_id": payload.content_id,
            "content_type": payload.content_type,
            "in_watchlist": queued,
        }

    @fastapi_app.delete("/users/{user_id}/watchlist/{content_type}/{content_id}")
    async def remove_from_watchlist(
        user_id: str, content_type: ContentType, content_id: str
    ) -> dict[str, Any]:
        services = get_services(fastapi_app)
        try:
            removed = await services.store.remove_from_watchlist(
                _session(user_id), content_id, content_type
            )
        except SQLAlchemyError as exc:
            raise _store_unavailable(exc) from exc
        if not removed:
            raise HTTPException(status_code=404, detail="Title is not in the watchlist")
        return {"removed": True}

    @fastapi_app.get("/catalog/trending")
    async def trending(window: str = Query(default="week", pattern="^(day|week)$")) -> dict[str, Any]:
        services = get_services(fastapi_app)
        result = await services.tmdb.trending(window)
        return {"results": _candidates_or_502(result)}

    @fastapi_app.get("/catalog/popular/{content_type}")
    async def popular(
        content_type: ContentType, page: int = Query(default=1, ge=1, le=500)
    ) -> dict[str, Any]:
        services = get_services(fastapi_app)
        result = await services.tmdb.popular(content_type, page=page)
        return {"results": _candidates_or_502(result)}

    @fastapi_app.get("/catalog/search")
    async def search(
        q: str = Query(default="", max_length=200),
        content_type: ContentType | None = Query(default=None),
        genre_id: int | None = Query(default=None, ge=1),
        page: int = Query(default=1, ge=1, le=500),
    ) -> dict[str, Any]:
        services = get_services(fastapi_app)
        result = await services.tmdb.search(
            q, content_type=content_type, genre_id=genre_id, page=page
        )
        return {"results": _candidates_or_502(result)}

    @fastapi_app.get("/catalog/anime")
    async def anime(page: int = Query(default=1, ge=1, le=500)) -> dict[str, Any]:
        services = get_services(fastapi_app)
        result = await services.tmdb.anime(page=page)
        return {"results": _candidates_or_502(result)}

    @fastapi_app.get("/catalog/genres")
    async def genres() -> dict[str, Any]:
        services = get_services(fastapi_app)
        mapping = await services.genres.build_map()
        if not mapping:
            raise HTTPException(status_code=502, detail="Genre list is unavailable")
        return {
            "genres": [
                {"id": genre_id, "name": name}
                for name, genre_id in sorted(mapping.items())
            ]
        }


def _serialise_candidate(item: CandidateItem) -> dict[str, Any]:
    payload = item.model_dump(mode="json")
    payload["poster_url"] = build_image_url(item.poster_path, POSTER_BASE_URL)
    payload["backdrop_url"] = build_image_url(item.backdrop_path, BACKDROP_BASE_URL)
    return payload


def _candidates_or_502(result: FetchResult[list[CandidateItem]]) -> list[dict[str, Any]]:
    if not result.ok:
        raise HTTPException(
            status_code=502, detail=f"Catalog request failed: {result.error}"
        )
    return [_serialise_candidate(item) for item in result.unwrap_or([])]


def _records_or_503(result: FetchResult[list[InteractionRecord]]) -> list[dict[str, Any]]:
    if not result.ok:
        raise HTTPException(status_code=503, detail="Interaction store is unavailable")
    return [record.model_dump(mode="json") for record in result.unwrap_or([])]


def _store_unavailable(exc: Exception) -> HTTPException:
    logger.warning("Interaction store write failed: %s", exc)
    return HTTPException(status_code=503, detail="Interaction store is unavailable")


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
