"""Pydantic models describing catalog payloads and user interaction state."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)

ContentType = Literal["movie", "tv"]
InteractionKind = Literal["watched", "rated", "queued"]
SeenKey = tuple[str, str]

CONTENT_TYPES: tuple[ContentType, ...] = ("movie", "tv")


@dataclass(frozen=True, slots=True)
class SessionContext:
    """Identity of the user a request is served for."""

    user_id: str

    def __post_init__(self) -> None:
        if not self.user_id or not self.user_id.strip():
            raise ValueError("user_id must be a non-empty string")


class InteractionRecord(BaseModel):
    """One user's observed relationship to one catalog item."""

    user_id: str
    content_id: str
    content_type: ContentType
    genres: list[str] = Field(default_factory=list)
    kind: InteractionKind
    rating: int | None = Field(default=None, ge=1, le=5)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    title: str | None = None
    poster_path: str | None = None

    @field_validator("content_id", mode="before")
    @classmethod
    def _coerce_content_id(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("genres", mode="before")
    @classmethod
    def _default_genres(cls, value: object) -> object:
        return value or []

    @model_validator(mode="after")
    def _rating_matches_kind(self) -> "InteractionRecord":
        if self.kind == "rated" and self.rating is None:
            raise ValueError("rated interactions require a rating")
        if self.kind != "rated" and self.rating is not None:
            raise ValueError("only rated interactions may carry a rating")
        return self

    @property
    def seen_key(self) -> SeenKey:
        return (self.content_id, self.content_type)


class ExplicitPreferences(BaseModel):
    """Preferences a user declared directly rather than through behaviour."""

    preferred_genres: list[str] = Field(default_factory=list)
    preferred_content_types: list[ContentType] = Field(default_factory=list)

    @field_validator("preferred_genres", mode="before")
    @classmethod
    def _clean_genres(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, list):
            cleaned: list[str] = []
            for entry in value:
                name = str(entry).strip()
                if name and name not in cleaned:
                    cleaned.append(name)
            return cleaned
        return value

    @field_validator("preferred_content_types", mode="before")
    @classmethod
    def _dedupe_types(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, list):
            return list(dict.fromkeys(value))
        return value


class PreferenceProfile(BaseModel):
    """Weighted view of what a user tends to watch and enjoy."""

    preferred_genres: list[str] = Field(default_factory=list, max_length=5)
    preferred_content_types: list[ContentType] = Field(
        default_factory=lambda: list(CONTENT_TYPES)
    )
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: Literal["inferred", "explicit"] = "inferred"

    @field_validator("preferred_content_types", mode="after")
    @classmethod
    def _default_content_types(cls, value: list[ContentType]) -> list[ContentType]:
        return value or list(CONTENT_TYPES)


class Genre(BaseModel):
    """A catalog genre entry."""

    id: int
    name: str


class GenreListPayload(BaseModel):
    """Response body of ``/genre/{type}/list``."""

    genres: list[Genre] = Field(default_factory=list)

    @field_validator("genres", mode="before")
    @classmethod
    def _default_genres(cls, value: object) -> object:
        return value or []


class CandidateItem(BaseModel):
    """A catalog entry that may be suggested to the user."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    content_type: ContentType
    title: str = ""
    overview: str | None = None
    poster_path: str | None = None
    backdrop_path: str | None = None
    release_date: str | None = None
    popularity: float = 0.0
    vote_average: float = 0.0
    vote_count: int = 0
    genre_ids: list[int] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("popularity", "vote_average", "vote_count", mode="before")
    @classmethod
    def _default_numbers(cls, value: object) -> object:
        return 0 if value is None else value

    @property
    def seen_key(self) -> SeenKey:
        return (self.id, self.content_type)

    @classmethod
    def from_tmdb(
        cls,
        entry: dict[str, Any],
        *,
        content_type: ContentType | None = None,
    ) -> "CandidateItem | None":
        """Build a candidate from a raw TMDB result row.

        Rows from mixed endpoints such as trending carry their own
        ``media_type``; rows that are neither movies nor shows yield ``None``.
        """

        resolved_type = content_type or entry.get("media_type")
        if resolved_type not in CONTENT_TYPES:
            return None
        if entry.get("id") is None:
            return None
        return cls(
            id=entry["id"],
            content_type=resolved_type,
            title=entry.get("title") or entry.get("name") or "",
            overview=entry.get("overview"),
            poster_path=entry.get("poster_path"),
            backdrop_path=entry.get("backdrop_path"),
            release_date=entry.get("release_date") or entry.get("first_air_date"),
            popularity=entry.get("popularity"),
            vote_average=entry.get("vote_average"),
            vote_count=entry.get("vote_count"),
            genre_ids=entry.get("genre_ids") or [],
        )


class DiscoverPayload(BaseModel):
    """Paged listing body shared by discover, trending, popular and search."""

    page: int = 1
    results: list[Any]
    total_pages: int = 0
    total_results: int = 0

    def candidates(self, content_type: ContentType | None = None) -> list[CandidateItem]:
        """Return validated candidates, skipping malformed rows."""

        items: list[CandidateItem] = []
        for entry in self.results:
            if not isinstance(entry, dict):
                continue
            try:
                item = CandidateItem.from_tmdb(entry, content_type=content_type)
            except ValidationError:
                logger.debug("Skipping malformed catalog row: %s", entry.get("id"))
                continue
            if item is not None:
                items.append(item)
        return items
