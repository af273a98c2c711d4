"""Infer a weighted preference profile from a user's interactions."""

from __future__ import annotations

from typing import Generic, Hashable, Iterable, Sequence, TypeVar

from ..models import (
    CONTENT_TYPES,
    ContentType,
    ExplicitPreferences,
    InteractionRecord,
    PreferenceProfile,
)

K = TypeVar("K", bound=Hashable)

MAX_PREFERRED_GENRES = 5
CONFIDENCE_SATURATION = 10
MIN_POSITIVE_RATING = 4

WATCH_WEIGHT = 1
RATING_WEIGHTS = {5: 3, 4: 2}


class WeightTally(Generic[K]):
    """Accumulates weights per key and ranks them deterministically.

    Keys remember the order they were first added in; ranking sorts by
    descending weight and leaves equally weighted keys in that order.
    """

    def __init__(self) -> None:
        self._weights: dict[K, float] = {}

    def add(self, key: K, weight: float) -> None:
        self._weights[key] = self._weights.get(key, 0) + weight

    def add_all(self, keys: Iterable[K], weight: float) -> None:
        for key in keys:
            self.add(key, weight)

    def weight(self, key: K) -> float:
        return self._weights.get(key, 0)

    def ranked(self, limit: int | None = None) -> list[K]:
        ordered = sorted(self._weights, key=lambda key: -self._weights[key])
        if limit is not None:
            return ordered[:limit]
        return ordered


def rating_weight(rating: int | None) -> int:
    """Positive signal carried by a star rating; below 4 carries none."""

    if rating is None or rating < MIN_POSITIVE_RATING:
        return 0
    return RATING_WEIGHTS.get(rating, RATING_WEIGHTS[5])


def analyze_preferences(
    watch_history: Sequence[InteractionRecord],
    ratings: Sequence[InteractionRecord],
    explicit: ExplicitPreferences | None = None,
) -> PreferenceProfile:
    """Build a :class:`PreferenceProfile` from watches, ratings and declared tastes.

    Watches add a weight of 1 to the record's content type and to each of its
    genres. Ratings of 5 add 3 and ratings of 4 add 2; lower ratings are
    ignored rather than counted against anything. Genres are capped to the top
    five while every seen content type is kept.

    Non-empty explicit genre or content type lists replace the corresponding
    inferred list outright.
    """

    genres: WeightTally[str] = WeightTally()
    content_types: WeightTally[ContentType] = WeightTally()

    for record in watch_history:
        content_types.add(record.content_type, WATCH_WEIGHT)
        genres.add_all(_unique(record.genres), WATCH_WEIGHT)

    for record in ratings:
        weight = rating_weight(record.rating)
        if not weight:
            continue
        content_types.add(record.content_type, weight)
        genres.add_all(_unique(record.genres), weight)

    preferred_genres = genres.ranked(MAX_PREFERRED_GENRES)
    preferred_types = content_types.ranked() or list(CONTENT_TYPES)

    interactions = len(watch_history) + len(ratings)
    confidence = min(interactions, CONFIDENCE_SATURATION) / CONFIDENCE_SATURATION

    source = "inferred"
    if explicit is not None:
        if explicit.preferred_genres:
            preferred_genres = list(explicit.preferred_genres)[:MAX_PREFERRED_GENRES]
            source = "explicit"
        if explicit.preferred_content_types:
            preferred_types = list(explicit.preferred_content_types)
            source = "explicit"

    return PreferenceProfile(
        preferred_genres=preferred_genres,
        preferred_content_types=preferred_types,
        confidence=confidence,
        source=source,
    )


def _unique(values: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for value in values:
        name = value.strip() if isinstance(value, str) else ""
        if name and name not in seen:
            seen.append(name)
    return seen
