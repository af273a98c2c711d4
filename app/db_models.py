"""SQLAlchemy ORM models backing the per-user interaction collections."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WatchHistoryEntry(Base):
    """A title the user has watched; rewatches refresh the existing row."""

    __tablename__ = "watch_history"
    __table_args__ = (
        UniqueConstraint("user_id", "content_id", "content_type", name="uq_watch_history_item"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    content_id: Mapped[str] = mapped_column(String(64))
    content_type: Mapped[str] = mapped_column(String(8))
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    poster_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    genres: Mapped[list[str]] = mapped_column(JSON, default=list)
    watched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class RatingEntry(Base):
    """A 1-5 star rating for a title."""

    __tablename__ = "user_ratings"
    __table_args__ = (
        UniqueConstraint("user_id", "content_id", "content_type", name="uq_user_ratings_item"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="rating_range"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    content_id: Mapped[str] = mapped_column(String(64))
    content_type: Mapped[str] = mapped_column(String(8))
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    poster_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    genres: Mapped[list[str]] = mapped_column(JSON, default=list)
    rating: Mapped[int] = mapped_column(Integer)
    rated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class WatchlistEntry(Base):
    """A title queued to watch later."""

    __tablename__ = "user_watchlist"
    __table_args__ = (
        UniqueConstraint("user_id", "content_id", "content_type", name="uq_user_watchlist_item"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    content_id: Mapped[str] = mapped_column(String(64))
    content_type: Mapped[str] = mapped_column(String(8))
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    poster_path: Mapped[str | None] = mapped_column(String(255), nullable=True)
    genres: Mapped[list[str]] = mapped_column(JSON, default=list)
    added_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class PreferenceEntry(Base):
    """Explicitly declared genre and content type preferences."""

    __tablename__ = "user_preferences"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    preferred_genres: Mapped[list[str]] = mapped_column(JSON, default=list)
    preferred_content_types: Mapped[list[str]] = mapped_column(JSON, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
