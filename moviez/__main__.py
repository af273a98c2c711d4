"""Run the MovieZ service with ``python -m moviez``."""

from __future__ import annotations

import logging

import uvicorn

from app.config import get_settings

logger = logging.getLogger(__name__)


def main() -> None:
    """Start uvicorn on the configured host and port."""

    settings = get_settings()
    if not settings.tmdb_configured:
        logger.warning("Starting without TMDB_API_KEY; catalog lookups will be empty")
    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
