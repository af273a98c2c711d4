"""Resolve human-readable genre names to TMDB genre identifiers."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from ..models import CONTENT_TYPES
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)


class GenreResolver:
    """Name to id lookup over the union of the movie and tv genre lists.

    A map built from both lists is cached for the lifetime of the resolver.
    When either list fails to load the partial map is still used for the
    current request but the next call tries again.
    """

    def __init__(self, tmdb: TMDBClient):
        self._tmdb = tmdb
        self._cache: dict[str, int] | None = None

    @property
    def cached(self) -> bool:
        return self._cache is not None

    async def build_map(self) -> dict[str, int]:
        if self._cache is not None:
            return dict(self._cache)

        results = await asyncio.gather(
            *(self._tmdb.fetch_genres(content_type) for content_type in CONTENT_TYPES)
        )

        mapping: dict[str, int] = {}
        complete = True
        for content_type, result in zip(CONTENT_TYPES, results):
            if not result.ok:
                complete = False
                logger.warning(
                    "Excluding %s genres from the genre map: %s", content_type, result.error
                )
                continue
            # Later lists overwrite earlier ones when names collide.
            for genre in result.unwrap_or([]):
                mapping[genre.name] = genre.id

        if complete:
            self._cache = dict(mapping)
        return mapping

    async def resolve(self, names: Sequence[str]) -> list[int]:
        """Return ids for the known names in input order; unknown names are dropped."""

        if not names:
            return []
        mapping = await self.build_map()
        if not mapping:
            return []
        lookup = {name.strip().casefold(): genre_id for name, genre_id in mapping.items()}

        resolved: list[int] = []
        for name in names:
            genre_id = lookup.get(str(name).strip().casefold())
            if genre_id is None:
                logger.debug("No catalog genre named %r", name)
                continue
            if genre_id not in resolved:
                resolved.append(genre_id)
        return resolved
