"""
Shared HTTP client sessions for the application.

Provides named, lazy-initialized aiohttp.ClientSession singletons
to avoid per-request session creation overhead and TCP connection churn.

Session profiles
~~~~~~~~~~~~~~~~
- **fetcher** – remote image downloads (timeouts from settings, pool limit=50)

Shutdown
~~~~~~~~
Call ``close_all_sessions()`` once during application shutdown.
"""
from __future__ import annotations

import aiohttp

from image_transformer.infra.logging_config import get_logger

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Internal state
# ---------------------------------------------------------------------------

_sessions: dict[str, aiohttp.ClientSession] = {}


def _get_or_create(
    name: str,
    timeout: aiohttp.ClientTimeout,
    limit: int = 10,
    headers: dict[str, str] | None = None,
) -> aiohttp.ClientSession:
    """Return an existing session or create a new one."""
    session = _sessions.get(name)
    if session is None or session.closed:
        session = aiohttp.ClientSession(
            timeout=timeout,
            headers=headers,
            connector=aiohttp.TCPConnector(
                keepalive_timeout=30,
                limit=limit,
                enable_cleanup_closed=True,
            ),
        )
        _sessions[name] = session
        logger.debug("HTTP session '%s' created (limit=%d)", name, limit)
    return session


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def get_fetcher_session() -> aiohttp.ClientSession:
    """Session for remote image downloads (direct and proxy fetchers)."""
    from image_transformer.config import settings

    return _get_or_create(
        "fetcher",
        aiohttp.ClientTimeout(
            total=settings.fetch_timeout_seconds,
            connect=settings.fetch_connect_timeout_seconds,
        ),
        limit=50,
        headers={"User-Agent": settings.fetch_user_agent},
    )


async def close_all_sessions() -> None:
    """Gracefully close every managed session.  Call during app shutdown."""
    for name in list(_sessions):
        session = _sessions.pop(name, None)
        if session is not None and not session.closed:
            await session.close()
            logger.debug("HTTP session '%s' closed", name)
