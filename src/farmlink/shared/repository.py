"""Async repository for the shared ``devices`` table."""

from __future__ import annotations

import logging
from collections.abc import Iterable

import asyncpg

from farmlink.shared.enums import DeviceStatus
from farmlink.shared.exceptions import DatabaseError
from farmlink.shared.models import DeviceRecord

logger = logging.getLogger(__name__)


class DeviceRepository:
    """Upsert and offline-marking for devices attached to one host."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def upsert(self, device: DeviceRecord) -> None:
        """Insert or refresh a device row keyed by its identifier."""
        try:
            await self._pool.execute(
                """
                INSERT INTO devices (id, type, model, os_version, status, host_name, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (id) DO UPDATE
                   SET type = EXCLUDED.type,
                       model = EXCLUDED.model,
                       os_version = EXCLUDED.os_version,
                       status = EXCLUDED.status,
                       host_name = EXCLUDED.host_name,
                       updated_at = EXCLUDED.updated_at
                """,
                device.id,
                device.platform.value,
                device.model,
                device.os_version,
                device.status.value,
                device.host_name,
                device.updated_at,
            )
        except asyncpg.PostgresError as exc:
            raise DatabaseError(f"failed to upsert device {device.id}: {exc}") from exc

    async def mark_offline(self, host_name: str, present_ids: Iterable[str]) -> int:
        """Mark this host's devices that were not seen as offline.

        Returns:
            Number of rows updated.
        """
        try:
            result = await self._pool.execute(
                """
                UPDATE devices
                   SET status = $1,
                       updated_at = now()
                 WHERE host_name = $2
                   AND status <> $1
                   AND NOT (id = ANY($3::text[]))
                """,
                DeviceStatus.OFFLINE.value,
                host_name,
                list(present_ids),
            )
        except asyncpg.PostgresError as exc:
            raise DatabaseError(f"failed to mark devices offline for {host_name}: {exc}") from exc
        return _affected_rows(result)


def _affected_rows(status: str) -> int:
    """Parse asyncpg's command tag (``UPDATE 3``)."""
    try:
        return int(str(status).rsplit(" ", 1)[-1])
    except ValueError:
        return 0
