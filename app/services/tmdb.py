"""Gateway for The Movie Database (TMDB) catalog API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import (
    CONTENT_TYPES,
    CandidateItem,
    ContentType,
    DiscoverPayload,
    Genre,
    GenreListPayload,
)
from ..results import FetchResult

logger = logging.getLogger(__name__)

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"
BACKDROP_BASE_URL = "https://image.tmdb.org/t/p/w1280"

DISCOVER_SORT = "popularity.desc"
DISCOVER_MIN_VOTE_AVERAGE = 6.5
DISCOVER_MIN_VOTE_COUNT = 100

ANIME_KEYWORD_ID = 210024
ANIMATION_GENRE_ID = 16


class TMDBClient:
    """Thin wrapper around the TMDB HTTP API.

    Every call returns a :class:`FetchResult`; transport errors, HTTP errors,
    timeouts and malformed bodies all surface as failures instead of raising.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._max_retries = settings.tmdb_max_retries

    async def fetch_json(
        self, path: str, params: Mapping[str, Any] | None = None
    ) -> FetchResult[dict[str, Any]]:
        """GET ``path`` and return the decoded JSON object."""

        if not self._settings.tmdb_api_key:
            logger.warning("TMDB API key missing, skipping request to %s", path)
            return FetchResult.failure("TMDB API key is not configured")

        query: dict[str, Any] = {
            "api_key": self._settings.tmdb_api_key,
            "language": self._settings.tmdb_language,
        }
        if params:
            query.update(params)

        attempt = 0
        while True:
            try:
                response = await self._client.get(path, params=query)
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = self._backoff(attempt)
                    logger.info(
                        "Transient error talking to TMDB (%s). Retrying %s in %.1fs",
                        exc.__class__.__name__,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.warning("TMDB request to %s failed: %s", path, exc)
                return FetchResult.failure(f"{exc.__class__.__name__}: {exc}")

            if 500 <= response.status_code < 600:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = self._backoff(attempt)
                    logger.info(
                        "TMDB %s during request to %s. Retrying in %.1fs",
                        response.status_code,
                        path,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
            break

        if response.status_code >= 400:
            logger.warning(
                "TMDB request to %s failed with %s: %s",
                path,
                response.status_code,
                response.text[:200],
            )
            return FetchResult.failure(f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            logger.warning("Unexpected non-JSON TMDB response for %s", path)
            return FetchResult.failure("response body is not JSON")
        if not isinstance(data, dict):
            logger.warning("Unexpected TMDB response structure for %s", path)
            return FetchResult.failure("response body is not a JSON object")
        return FetchResult.success(data)

    async def fetch_genres(self, content_type: ContentType) -> FetchResult[list[Genre]]:
        """Return the catalog's genre taxonomy for one content type."""

        result = await self.fetch_json(f"/genre/{content_type}/list")
        if not result.ok:
            return FetchResult.failure(result.error or "genre fetch failed")
        try:
            payload = GenreListPayload.model_validate(result.value)
        except ValidationError as exc:
            logger.warning("Malformed %s genre list from TMDB: %s", content_type, exc)
            return FetchResult.failure("malformed genre list")
        return FetchResult.success(payload.genres)

    async def discover(
        self,
        content_type: ContentType,
        *,
        genre_ids: list[int] | None = None,
        page: int = 1,
    ) -> FetchResult[list[CandidateItem]]:
        """Popular, well-rated titles of one type, optionally genre filtered.

        Genre ids are pipe-joined so that a title matching any one of them
        qualifies.
        """

        params: dict[str, Any] = {
            "sort_by": DISCOVER_SORT,
            "vote_average.gte": DISCOVER_MIN_VOTE_AVERAGE,
            "vote_count.gte": DISCOVER_MIN_VOTE_COUNT,
            "page": page,
        }
        if genre_ids:
            params["with_genres"] = "|".join(str(genre_id) for genre_id in genre_ids)
        return await self._fetch_listing(
            f"/discover/{content_type}", params, content_type=content_type
        )

    async def trending(self, window: str = "week") -> FetchResult[list[CandidateItem]]:
        """Trending movies and shows across the catalog."""

        if window not in {"day", "week"}:
            raise ValueError("Trending window must be 'day' or 'week'")
        return await self._fetch_listing(f"/trending/all/{window}", {})

    async def popular(
        self, content_type: ContentType, *, page: int = 1
    ) -> FetchResult[list[CandidateItem]]:
        return await self._fetch_listing(
            f"/{content_type}/popular", {"page": page}, content_type=content_type
        )

    async def search(
        self,
        query: str,
        *,
        content_type: ContentType | None = None,
        genre_id: int | None = None,
        page: int = 1,
    ) -> FetchResult[list[CandidateItem]]:
        """Search movies and shows, or browse by genre when no query is given.

        ``content_type=None`` covers both types, movies first. A blank query
        falls back to a popularity-sorted discover listing, optionally
        narrowed to ``genre_id``.
        When both types are requested, one failing type is logged and skipped.
        """

        cleaned = (query or "").strip()
        types: tuple[ContentType, ...] = (content_type,) if content_type else CONTENT_TYPES
        if cleaned:
            params: dict[str, Any] = {"query": cleaned, "include_adult": "false", "page": page}
            calls = [
                self._fetch_listing(f"/search/{kind}", params, content_type=kind)
                for kind in types
            ]
        else:
            params = {"sort_by": DISCOVER_SORT, "page": page}
            if genre_id is not None:
                params["with_genres"] = str(genre_id)
            calls = [
                self._fetch_listing(f"/discover/{kind}", params, content_type=kind)
                for kind in types
            ]

        results = await asyncio.gather(*calls)
        if all(not result.ok for result in results):
            return FetchResult.failure(results[0].error or "search failed")

        items: list[CandidateItem] = []
        for kind, result in zip(types, results):
            if not result.ok:
                logger.warning("Search skipped %s results: %s", kind, result.error)
                continue
            items.extend(result.unwrap_or([]))
        return FetchResult.success(items)

    async def anime(self, *, page: int = 1) -> FetchResult[list[CandidateItem]]:
        """Animated shows tagged with the anime keyword."""

        return await self._fetch_listing(
            "/discover/tv",
            {
                "with_keywords": ANIME_KEYWORD_ID,
                "with_genres": ANIMATION_GENRE_ID,
                "sort_by": DISCOVER_SORT,
                "page": page,
            },
            content_type="tv",
        )

    async def _fetch_listing(
        self,
        path: str,
        params: Mapping[str, Any],
        *,
        content_type: ContentType | None = None,
    ) -> FetchResult[list[CandidateItem]]:
        result = await self.fetch_json(path, params)
        if not result.ok:
            return FetchResult.failure(result.error or "listing fetch failed")
        try:
            payload = DiscoverPayload.model_validate(result.value)
        except ValidationError:
            logger.warning("TMDB response for %s is missing a results array", path)
            return FetchResult.failure("malformed listing payload")
        return FetchResult.success(payload.candidates(content_type))

    @staticmethod
    def _backoff(attempt: int) -> float:
        return min(2 ** (attempt - 1), 5) * 0.5 + (0.1 * attempt)


def build_image_url(path: str | None, base_url: str = POSTER_BASE_URL) -> str | None:
    """Return an absolute image URL for a TMDB image path."""

    if not path:
        return None
    if path.startswith("http"):
        return path
    return f"{base_url}{path}"
