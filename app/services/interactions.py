"""Read/write accessor over the per-user interaction collections."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import PreferenceEntry, RatingEntry, WatchHistoryEntry, WatchlistEntry
from ..models import ContentType, ExplicitPreferences, InteractionRecord, SessionContext
from ..results import FetchResult

logger = logging.getLogger(__name__)


class MediaRef(BaseModel):
    """The catalog item an interaction is written against."""

    content_id: str
    content_type: ContentType
    title: str | None = None
    poster_path: str | None = None
    genres: list[str] = Field(default_factory=list)

    @field_validator("content_id", mode="before")
    @classmethod
    def _coerce_content_id(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value


class InteractionStore:
    """Accessor over watch history, ratings, watchlist and explicit preferences.

    Reads return :class:`FetchResult` so the recommendation core can degrade a
    failed collection to an empty one. Writes raise, since the caller has to
    report them.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_watched(
        self, ctx: SessionContext, *, limit: int | None = None
    ) -> FetchResult[list[InteractionRecord]]:
        statement = (
            select(WatchHistoryEntry)
            .where(WatchHistoryEntry.user_id == ctx.user_id)
            .order_by(WatchHistoryEntry.watched_at.desc(), WatchHistoryEntry.id.desc())
        )
        if limit is not None:
            statement = statement.limit(limit)
        return await self._read(
            statement,
            lambda row: InteractionRecord(
                user_id=row.user_id,
                content_id=row.content_id,
                content_type=row.content_type,
                genres=row.genres,
                kind="watched",
                timestamp=row.watched_at,
                title=row.title,
                poster_path=row.poster_path,
            ),
            label="watch history",
        )

    async def list_ratings(
        self,
        ctx: SessionContext,
        *,
        limit: int | None = None,
        min_rating: int | None = None,
    ) -> FetchResult[list[InteractionRecord]]:
        statement = select(RatingEntry).where(RatingEntry.user_id == ctx.user_id)
        if min_rating is not None:
            statement = statement.where(RatingEntry.rating >= min_rating)
        statement = statement.order_by(RatingEntry.rated_at.desc(), RatingEntry.id.desc())
        if limit is not None:
            statement = statement.limit(limit)
        return await self._read(
            statement,
            lambda row: InteractionRecord(
                user_id=row.user_id,
                content_id=row.content_id,
                content_type=row.content_type,
                genres=row.genres,
                kind="rated",
                rating=row.rating,
                timestamp=row.rated_at,
                title=row.title,
                poster_path=row.poster_path,
            ),
            label="ratings",
        )

    async def list_watchlist(
        self, ctx: SessionContext, *, limit: int | None = None
    ) -> FetchResult[list[InteractionRecord]]:
        statement = (
            select(WatchlistEntry)
            .where(WatchlistEntry.user_id == ctx.user_id)
            .order_by(WatchlistEntry.added_at.desc(), WatchlistEntry.id.desc())
        )
        if limit is not None:
            statement = statement.limit(limit)
        return await self._read(
            statement,
            lambda row: InteractionRecord(
                user_id=row.user_id,
                content_id=row.content_id,
                content_type=row.content_type,
                genres=row.genres,
                kind="queued",
                timestamp=row.added_at,
                title=row.title,
                poster_path=row.poster_path,
            ),
            label="watchlist",
        )

    async def get_explicit_preferences(
        self, ctx: SessionContext
    ) -> FetchResult[ExplicitPreferences | None]:
        try:
            async with self._session_factory() as session:
                entry = await session.get(PreferenceEntry, ctx.user_id)
        except SQLAlchemyError as exc:
            logger.warning("Failed to load preferences for %s: %s", ctx.user_id, exc)
            return FetchResult.failure(str(exc))
        if entry is None:
            return FetchResult.success(None)
        try:
            preferences = ExplicitPreferences(
                preferred_genres=entry.preferred_genres or [],
                preferred_content_types=entry.preferred_content_types or [],
            )
        except ValidationError as exc:
            logger.warning("Stored preferences for %s are malformed: %s", ctx.user_id, exc)
            return FetchResult.failure("malformed stored preferences")
        return FetchResult.success(preferences)

    async def record_watch(self, ctx: SessionContext, item: MediaRef) -> InteractionRecord:
        """Add a title to the watch history, refreshing it if already present."""

        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            entry = await self._find(session, WatchHistoryEntry, ctx, item.content_id, item.content_type)
            if entry is None:
                entry = WatchHistoryEntry(
                    user_id=ctx.user_id,
                    content_id=item.content_id,
                    content_type=item.content_type,
                )
                session.add(entry)
            entry.title = item.title
            entry.poster_path = item.poster_path
            entry.genres = list(item.genres)
            entry.watched_at = now
            await session.commit()
        return InteractionRecord(
            user_id=ctx.user_id,
            content_id=item.content_id,
            content_type=item.content_type,
            genres=item.genres,
            kind="watched",
            timestamp=now,
            title=item.title,
            poster_path=item.poster_path,
        )

    async def rate(self, ctx: SessionContext, item: MediaRef, rating: int) -> InteractionRecord:
        """Store or replace the user's rating for a title."""

        if not 1 <= int(rating) <= 5:
            raise ValueError("Ratings must be between 1 and 5")
        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            entry = await self._find(session, RatingEntry, ctx, item.content_id, item.content_type)
            if entry is None:
                entry = RatingEntry(
                    user_id=ctx.user_id,
                    content_id=item.content_id,
                    content_type=item.content_type,
                )
                session.add(entry)
            entry.title = item.title
            entry.poster_path = item.poster_path
            entry.genres = list(item.genres)
            entry.rating = int(rating)
            entry.rated_at = now
            await session.commit()
        return InteractionRecord(
            user_id=ctx.user_id,
            content_id=item.content_id,
            content_type=item.content_type,
            genres=item.genres,
            kind="rated",
            rating=int(rating),
            timestamp=now,
            title=item.title,
            poster_path=item.poster_path,
        )

    async def add_to_watchlist(self, ctx: SessionContext, item: MediaRef) -> bool:
        """Queue a title. Returns ``False`` when it was already queued."""

        async with self._session_factory() as session:
            existing = await self._find(session, WatchlistEntry, ctx, item.content_id, item.content_type)
            if existing is not None:
                return False
            session.add(
                WatchlistEntry(
                    user_id=ctx.user_id,
                    content_id=item.content_id,
                    content_type=item.content_type,
                    title=item.title,
                    poster_path=item.poster_path,
                    genres=list(item.genres),
                    added_at=datetime.now(timezone.utc),
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                # A concurrent insert won the unique constraint.
                await session.rollback()
                return False
        return True

    async def remove_from_watchlist(
        self, ctx: SessionContext, content_id: str, content_type: ContentType
    ) -> bool:
        """Remove a queued title. Returns whether anything was removed."""

        async with self._session_factory() as session:
            result = await session.execute(
                delete(WatchlistEntry).where(
                    WatchlistEntry.user_id == ctx.user_id,
                    WatchlistEntry.content_id == content_id,
                    WatchlistEntry.content_type == content_type,
                )
            )
            await session.commit()
        return bool(result.rowcount)

    async def toggle_watchlist(self, ctx: SessionContext, item: MediaRef) -> bool:
        """Queue the title if absent, otherwise remove it; returns new membership."""

        if await self.remove_from_watchlist(ctx, item.content_id, item.content_type):
            return False
        await self.add_to_watchlist(ctx, item)
        return True

    async def set_explicit_preferences(
        self, ctx: SessionContext, prefs: ExplicitPreferences
    ) -> ExplicitPreferences:
        async with self._session_factory() as session:
            entry = await session.get(PreferenceEntry, ctx.user_id)
            if entry is None:
                entry = PreferenceEntry(user_id=ctx.user_id)
                session.add(entry)
            entry.preferred_genres = list(prefs.preferred_genres)
            entry.preferred_content_types = list(prefs.preferred_content_types)
            entry.updated_at = datetime.now(timezone.utc)
            await session.commit()
        return prefs

    async def _read(
        self,
        statement: Any,
        convert: Any,
        *,
        label: str,
    ) -> FetchResult[list[InteractionRecord]]:
        try:
            async with self._session_factory() as session:
                rows: Sequence[Any] = (await session.scalars(statement)).all()
        except SQLAlchemyError as exc:
            logger.warning("Failed to read %s: %s", label, exc)
            return FetchResult.failure(str(exc))

        records: list[InteractionRecord] = []
        for row in rows:
            try:
                records.append(convert(row))
            except ValueError as exc:
                logger.warning("Skipping malformed %s row %s: %s", label, row.id, exc)
        return FetchResult.success(records)

    @staticmethod
    async def _find(
        session: AsyncSession,
        model: Any,
        ctx: SessionContext,
        content_id: str,
        content_type: str,
    ) -> Any:
        return await session.scalar(
            select(model).where(
                model.user_id == ctx.user_id,
                model.content_id == content_id,
                model.content_type == content_type,
            )
        )
