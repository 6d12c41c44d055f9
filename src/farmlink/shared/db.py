"""asyncpg connection pool factory."""

from __future__ import annotations

from typing import TYPE_CHECKING

import asyncpg

from farmlink.shared.exceptions import DatabaseError

if TYPE_CHECKING:
    from farmlink.config import Settings


async def create_pool(settings: Settings) -> asyncpg.Pool:
    """Create and return an asyncpg connection pool."""
    try:
        pool: asyncpg.Pool = await asyncpg.create_pool(dsn=settings.dsn, min_size=1, max_size=4)
    except (OSError, asyncpg.PostgresError) as exc:
        raise DatabaseError(f"cannot connect to {settings.db_host}:{settings.db_port}: {exc}") from exc
    return pool
