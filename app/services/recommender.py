"""Personalised recommendations built from a user's interaction history."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Iterable, TypeVar

from ..config import Settings
from ..models import CandidateItem, PreferenceProfile, SessionContext
from ..results import FetchResult
from .genres import GenreResolver
from .interactions import InteractionStore
from .preferences import MIN_POSITIVE_RATING, analyze_preferences
from .seen import build_seen_set
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

GENRE_QUERY_LIMIT = 3
CONTENT_TYPE_QUERY_LIMIT = 2
PER_TYPE_LIMIT = 6
TOP_UP_THRESHOLD = 8
MAX_RECOMMENDATIONS = 12


class RecommendationEngine:
    """Coordinates preference analysis, catalog discovery and seen filtering."""

    def __init__(
        self,
        tmdb: TMDBClient,
        store: InteractionStore,
        genre_resolver: GenreResolver,
        settings: Settings,
    ):
        self._tmdb = tmdb
        self._store = store
        self._genres = genre_resolver
        self._settings = settings

    async def profile_for(self, ctx: SessionContext) -> PreferenceProfile:
        """Analyse the user's recent watches, positive ratings and declared tastes."""

        limit = self._settings.interaction_fetch_limit
        watched, rated, explicit = await asyncio.gather(
            self._store.list_watched(ctx, limit=limit),
            self._store.list_ratings(ctx, limit=limit, min_rating=MIN_POSITIVE_RATING),
            self._store.get_explicit_preferences(ctx),
        )
        for label, result in (("watch history", watched), ("ratings", rated), ("preferences", explicit)):
            if not result.ok:
                logger.warning(
                    "Analysing %s without %s: %s", ctx.user_id, label, result.error
                )
        # Ratings are filtered by the store already; guard against stores that do not.
        ratings = [
            record
            for record in rated.unwrap_or([])
            if record.rating is not None and record.rating >= MIN_POSITIVE_RATING
        ]
        return analyze_preferences(
            watched.unwrap_or([]), ratings, explicit.unwrap_or(None)
        )

    async def recommend(self, ctx: SessionContext) -> list[CandidateItem]:
        """Return up to twelve unseen, de-duplicated suggestions.

        Never raises: failures of individual lookups shrink the result, and an
        unexpected error yields an empty list.
        """

        try:
            return await self._recommend(ctx)
        except Exception:
            logger.exception("Recommendation pipeline failed for %s", ctx.user_id)
            return []

    async def _recommend(self, ctx: SessionContext) -> list[CandidateItem]:
        profile, seen = await asyncio.gather(
            self.profile_for(ctx), build_seen_set(self._store, ctx)
        )
        # A seen id blocks the title under either content type.
        seen_ids = {content_id for content_id, _ in seen}
        try:
            genre_ids = await asyncio.wait_for(
                self._genres.resolve(profile.preferred_genres[:GENRE_QUERY_LIMIT]),
                timeout=self._settings.request_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Timed out resolving genres for %s; discovering unfiltered", ctx.user_id)
            genre_ids = []
        content_types = profile.preferred_content_types[:CONTENT_TYPE_QUERY_LIMIT]

        discovered = await asyncio.gather(
            *(
                self._bounded(
                    self._tmdb.discover(content_type, genre_ids=genre_ids),
                    label=f"discover {content_type}",
                )
                for content_type in content_types
            )
        )

        picks: list[CandidateItem] = []
        picked_ids: set[str] = set()
        for content_type, result in zip(content_types, discovered):
            if not result.ok:
                logger.warning(
                    "No %s discoveries for %s: %s", content_type, ctx.user_id, result.error
                )
            fresh = _unseen(result.unwrap_or([]), seen_ids, picked_ids)
            for item in fresh[:PER_TYPE_LIMIT]:
                picks.append(item)
                picked_ids.add(item.id)

        if len(picks) < TOP_UP_THRESHOLD:
            trending = await self._bounded(self._tmdb.trending("week"), label="trending")
            if not trending.ok:
                logger.warning(
                    "Trending top-up unavailable for %s: %s", ctx.user_id, trending.error
                )
            for item in _unseen(trending.unwrap_or([]), seen_ids, picked_ids):
                if len(picks) >= TOP_UP_THRESHOLD:
                    break
                picks.append(item)
                picked_ids.add(item.id)

        logger.info(
            "Built %s recommendations for %s (confidence %.1f, genres %s)",
            len(picks[:MAX_RECOMMENDATIONS]),
            ctx.user_id,
            profile.confidence,
            genre_ids or "any",
        )
        return picks[:MAX_RECOMMENDATIONS]

    async def _bounded(
        self, call: Awaitable[FetchResult[T]], *, label: str
    ) -> FetchResult[T]:
        """Apply the per-request timeout, turning a hang into a failure."""

        try:
            return await asyncio.wait_for(
                call, timeout=self._settings.request_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for %s", label)
            return FetchResult.failure(f"{label} timed out")


def _unseen(
    items: Iterable[CandidateItem], seen_ids: set[str], picked_ids: set[str]
) -> list[CandidateItem]:
    fresh: list[CandidateItem] = []
    batch_ids: set[str] = set()
    for item in items:
        if item.id in seen_ids or item.id in picked_ids or item.id in batch_ids:
            continue
        fresh.append(item)
        batch_ids.add(item.id)
    return fresh
