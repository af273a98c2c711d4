"""Behaviour tests for the recommendation engine."""

from __future__ import annotations

import asyncio
from typing import Any, cast

import pytest

from app.config import Settings
from app.models import CandidateItem, ExplicitPreferences, Genre, InteractionRecord, SessionContext
from app.results import FetchResult
from app.services.genres import GenreResolver
from app.services.interactions import InteractionStore
from app.services.recommender import (
    MAX_RECOMMENDATIONS,
    TOP_UP_THRESHOLD,
    RecommendationEngine,
)
from app.services.tmdb import TMDBClient

CTX = SessionContext("user-1")


def _items(prefix: str, content_type: str, count: int, *, start: int = 0) -> list[CandidateItem]:
    return [
        CandidateItem(
            id=f"{prefix}{index}",
            content_type=content_type,
            title=f"{prefix.upper()} {index}",
            popularity=float(1000 - index),
            vote_average=7.0,
            vote_count=500,
        )
        for index in range(start, start + count)
    ]


class FakeCatalog:
    """In-memory stand-in for the TMDB gateway."""

    def __init__(
        self,
        *,
        discover: dict[str, list[CandidateItem] | None] | None = None,
        trending: list[CandidateItem] | None = None,
        genres: dict[str, list[Genre] | None] | None = None,
        hang: set[str] | None = None,
    ):
        self._discover = discover if discover is not None else {}
        self._trending = trending
        self._genres = genres if genres is not None else {"movie": [], "tv": []}
        self._hang = hang or set()
        self.discover_calls: list[dict[str, Any]] = []
        self.trending_calls = 0

    async def fetch_genres(self, content_type: str) -> FetchResult[list[Genre]]:
        if "genres" in self._hang:
            await asyncio.sleep(60)
        genres = self._genres.get(content_type)
        if genres is None:
            return FetchResult.failure("HTTP 500")
        return FetchResult.success(genres)

    async def discover(self, content_type: str, *, genre_ids=None, page: int = 1):
        self.discover_calls.append({"content_type": content_type, "genre_ids": list(genre_ids or [])})
        if content_type in self._hang:
            await asyncio.sleep(60)
        items = self._discover.get(content_type)
        if items is None:
            return FetchResult.failure("HTTP 503")
        return FetchResult.success(list(items))

    async def trending(self, window: str = "week"):
        self.trending_calls += 1
        if self._trending is None:
            return FetchResult.failure("HTTP 503")
        return FetchResult.success(list(self._trending))


class FakeStore:
    """In-memory interaction collections."""

    def __init__(
        self,
        *,
        watched: list[InteractionRecord] | None = None,
        rated: list[InteractionRecord] | None = None,
        queued: list[InteractionRecord] | None = None,
        explicit: ExplicitPreferences | None = None,
        fail: set[str] | None = None,
    ):
        self.watched = watched or []
        self.rated = rated or []
        self.queued = queued or []
        self.explicit = explicit
        self._fail = fail or set()

    def _result(self, name: str, records: list[InteractionRecord], limit: int | None):
        if name in self._fail:
            return FetchResult.failure("store offline")
        return FetchResult.success(records[:limit] if limit is not None else list(records))

    async def list_watched(self, ctx, *, limit=None):
        return self._result("watched", self.watched, limit)

    async def list_ratings(self, ctx, *, limit=None, min_rating=None):
        records = [r for r in self.rated if min_rating is None or (r.rating or 0) >= min_rating]
        return self._result("rated", records, limit)

    async def list_watchlist(self, ctx, *, limit=None):
        return self._result("queued", self.queued, limit)

    async def get_explicit_preferences(self, ctx):
        if "explicit" in self._fail:
            return FetchResult.failure("store offline")
        return FetchResult.success(self.explicit)


def _record(content_id: str, content_type: str, kind: str, genres: list[str], rating: int | None = None):
    return InteractionRecord(
        user_id=CTX.user_id,
        content_id=content_id,
        content_type=content_type,
        kind=kind,
        genres=genres,
        rating=rating,
    )


def _engine(catalog: FakeCatalog, store: FakeStore, **settings: Any) -> RecommendationEngine:
    tmdb = cast(TMDBClient, catalog)
    return RecommendationEngine(
        tmdb,
        cast(InteractionStore, store),
        GenreResolver(tmdb),
        Settings(_env_file=None, TMDB_API_KEY="test", **settings),
    )


def _ids(items: list[CandidateItem]) -> list[str]:
    return [item.id for item in items]


@pytest.mark.anyio("asyncio")
async def test_discovery_results_are_grouped_by_preferred_type() -> None:
    catalog = FakeCatalog(
        discover={"movie": _items("m", "movie", 10), "tv": _items("t", "tv", 10)},
        genres={"movie": [Genre(id=28, name="Action")], "tv": []},
    )
    store = FakeStore(
        watched=[_record("w1", "movie", "watched", ["Action"]), _record("w2", "movie", "watched", ["Action"])],
        rated=[_record("r1", "tv", "rated", ["Drama"], rating=4)],
    )

    results = await _engine(catalog, store).recommend(CTX)

    assert _ids(results) == [f"m{i}" for i in range(6)] + [f"t{i}" for i in range(6)]
    assert [call["content_type"] for call in catalog.discover_calls] == ["movie", "tv"]
    assert all(call["genre_ids"] == [28] for call in catalog.discover_calls)
    assert catalog.trending_calls == 0


@pytest.mark.anyio("asyncio")
async def test_seen_titles_are_never_recommended() -> None:
    catalog = FakeCatalog(
        discover={"movie": _items("m", "movie", 10), "tv": []},
        trending=_items("m", "movie", 3) + _items("x", "tv", 10),
    )
    store = FakeStore(
        watched=[_record("m0", "movie", "watched", ["Action"])],
        rated=[_record("m1", "movie", "rated", ["Action"], rating=2)],
        queued=[_record("m2", "movie", "queued", []), _record("x0", "tv", "queued", [])],
    )

    results = await _engine(catalog, store).recommend(CTX)

    assert not {"m0", "m1", "m2", "x0"} & set(_ids(results))
    assert _ids(results)[:6] == ["m3", "m4", "m5", "m6", "m7", "m8"]


@pytest.mark.anyio("asyncio")
async def test_results_are_bounded_and_unique() -> None:
    shared = _items("dup", "movie", 6)
    catalog = FakeCatalog(
        discover={"movie": shared + _items("m", "movie", 20), "tv": shared + _items("t", "tv", 20)},
        trending=shared + _items("z", "movie", 20),
    )
    store = FakeStore(watched=[_record("w", "tv", "watched", []), _record("w2", "movie", "watched", [])])

    results = await _engine(catalog, store).recommend(CTX)

    assert len(results) <= MAX_RECOMMENDATIONS
    assert len(_ids(results)) == len(set(_ids(results)))


@pytest.mark.anyio("asyncio")
async def test_trending_fills_to_threshold_when_discovery_fails() -> None:
    trending = _items("z", "movie", 15)
    catalog = FakeCatalog(discover={"movie": None, "tv": None}, trending=trending)
    store = FakeStore(watched=[_record("w", "movie", "watched", ["Drama"])])

    results = await _engine(catalog, store).recommend(CTX)

    assert len(results) == TOP_UP_THRESHOLD
    assert _ids(results) == [f"z{i}" for i in range(8)]


@pytest.mark.anyio("asyncio")
async def test_top_up_skips_items_already_picked_or_seen() -> None:
    catalog = FakeCatalog(
        discover={"movie": _items("m", "movie", 3), "tv": []},
        trending=_items("m", "movie", 2) + _items("z", "movie", 10),
    )
    store = FakeStore(queued=[_record("z0", "movie", "queued", [])])

    results = await _engine(catalog, store).recommend(CTX)

    assert _ids(results) == ["m0", "m1", "m2", "z1", "z2", "z3", "z4", "z5"]


@pytest.mark.anyio("asyncio")
async def test_cold_start_profile_uses_both_types_and_trending() -> None:
    catalog = FakeCatalog(discover={"movie": [], "tv": []}, trending=_items("z", "tv", 20))
    store = FakeStore()
    engine = _engine(catalog, store)

    profile = await engine.profile_for(CTX)
    results = await engine.recommend(CTX)

    assert profile.confidence == 0
    assert profile.preferred_content_types == ["movie", "tv"]
    assert catalog.discover_calls == [
        {"content_type": "movie", "genre_ids": []},
        {"content_type": "tv", "genre_ids": []},
    ]
    assert 0 < len(results) <= MAX_RECOMMENDATIONS
    assert all(item.id.startswith("z") for item in results)


@pytest.mark.anyio("asyncio")
async def test_genre_map_failure_runs_unfiltered_discovery() -> None:
    catalog = FakeCatalog(
        discover={"movie": _items("m", "movie", 8), "tv": _items("t", "tv", 8)},
        genres={"movie": None, "tv": None},
    )
    store = FakeStore(watched=[_record("w", "movie", "watched", ["Action", "Drama"])])

    results = await _engine(catalog, store).recommend(CTX)

    assert all(call["genre_ids"] == [] for call in catalog.discover_calls)
    assert len(results) == 6


@pytest.mark.anyio("asyncio")
async def test_only_top_three_genres_are_resolved() -> None:
    names = ["Action", "Comedy", "Drama", "Horror"]
    catalog = FakeCatalog(
        discover={"movie": _items("m", "movie", 8)},
        genres={"movie": [Genre(id=index, name=name) for index, name in enumerate(names, 1)], "tv": []},
    )
    store = FakeStore(explicit=ExplicitPreferences(preferred_genres=names, preferred_content_types=["movie"]))

    await _engine(catalog, store).recommend(CTX)

    assert catalog.discover_calls == [{"content_type": "movie", "genre_ids": [1, 2, 3]}]


@pytest.mark.anyio("asyncio")
async def test_total_failure_returns_empty_list() -> None:
    catalog = FakeCatalog(discover={}, trending=None, genres={"movie": None, "tv": None})
    store = FakeStore(fail={"watched", "rated", "queued", "explicit"})

    assert await _engine(catalog, store).recommend(CTX) == []


@pytest.mark.anyio("asyncio")
async def test_unexpected_errors_never_escape() -> None:
    class ExplodingStore(FakeStore):
        async def list_watched(self, ctx, *, limit=None):
            raise RuntimeError("boom")

    catalog = FakeCatalog(discover={"movie": _items("m", "movie", 8)}, trending=_items("z", "movie", 8))

    assert await _engine(catalog, ExplodingStore()).recommend(CTX) == []


@pytest.mark.anyio("asyncio")
async def test_hanging_discovery_is_cut_off_by_timeout() -> None:
    catalog = FakeCatalog(
        discover={"movie": _items("m", "movie", 8), "tv": _items("t", "tv", 8)},
        trending=_items("z", "movie", 8),
        hang={"tv"},
    )
    engine = _engine(catalog, FakeStore(), REQUEST_TIMEOUT=1.0)

    results = await engine.recommend(CTX)

    assert _ids(results) == [f"m{i}" for i in range(6)] + ["z0", "z1"]


@pytest.mark.anyio("asyncio")
async def test_profile_ignores_low_ratings_from_permissive_stores() -> None:
    class UnfilteredStore(FakeStore):
        async def list_ratings(self, ctx, *, limit=None, min_rating=None):
            return FetchResult.success(list(self.rated))

    store = UnfilteredStore(
        watched=[_record("w", "tv", "watched", ["Drama"])],
        rated=[_record("r", "movie", "rated", ["Comedy"], rating=1)],
    )

    profile = await _engine(FakeCatalog(), store).profile_for(CTX)

    assert profile.preferred_genres == ["Drama"]
    assert profile.preferred_content_types == ["tv"]


@pytest.mark.anyio("asyncio")
async def test_seen_id_blocks_the_other_content_type() -> None:
    catalog = FakeCatalog(discover={"movie": [], "tv": []}, trending=_items("z", "tv", 10))
    store = FakeStore(watched=[_record("z0", "movie", "watched", [])])

    results = await _engine(catalog, store).recommend(CTX)

    assert "z0" not in _ids(results)
    assert _ids(results) == [f"z{i}" for i in range(1, 9)]


@pytest.mark.anyio("asyncio")
async def test_hanging_genre_lookup_falls_back_to_unfiltered_discovery() -> None:
    catalog = FakeCatalog(
        discover={"movie": _items("m", "movie", 8), "tv": _items("t", "tv", 8)},
        hang={"genres"},
    )
    store = FakeStore(watched=[_record("w", "movie", "watched", ["Action"])])

    results = await _engine(catalog, store, REQUEST_TIMEOUT=1.0).recommend(CTX)

    assert catalog.discover_calls == [{"content_type": "movie", "genre_ids": []}]
    assert _ids(results) == [f"m{i}" for i in range(6)]
