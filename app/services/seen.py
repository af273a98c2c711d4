"""Build the set of titles a user has already interacted with."""

from __future__ import annotations

import asyncio
import logging

from ..models import SeenKey, SessionContext
from .interactions import InteractionStore

logger = logging.getLogger(__name__)


async def build_seen_set(store: InteractionStore, ctx: SessionContext) -> set[SeenKey]:
    """Union of watched, rated and queued ``(content_id, content_type)`` pairs.

    A collection that fails to load contributes nothing; the rest still count.
    """

    watched, rated, queued = await asyncio.gather(
        store.list_watched(ctx),
        store.list_ratings(ctx),
        store.list_watchlist(ctx),
    )

    seen: set[SeenKey] = set()
    for label, result in (("watched", watched), ("rated", rated), ("queued", queued)):
        if not result.ok:
            logger.warning(
                "Seen set for %s is missing %s titles: %s", ctx.user_id, label, result.error
            )
            continue
        seen.update(record.seen_key for record in result.unwrap_or([]))
    return seen
