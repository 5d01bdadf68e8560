"""
PostgreSQL-backed version log (table resource_history).
"""

import json
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from ehr_platform.services.postgres_service import PostgresService
from .versioning import HistoryStore, VersionAction, VersionEntry

_COLUMNS = "resource_type, resource_id, version_id, resource, action, timestamp"

# One statement: the append happens only if MAX(version_id) still equals the
# expected version. Two racing writers compute the same next id; the unique key
# turns the loser into DO NOTHING, so it gets no row back.
SQL_COMPARE_AND_APPEND = """
INSERT INTO resource_history (resource_type, resource_id, version_id, resource, action)
SELECT $1::varchar, $2::varchar, COALESCE(MAX(version_id), 0) + 1, $4::jsonb, $5::varchar
FROM resource_history
WHERE resource_type = $1 AND resource_id = $2
HAVING COALESCE(MAX(version_id), 0) = $3::int
ON CONFLICT (resource_type, resource_id, version_id) DO NOTHING
RETURNING version_id, timestamp
"""

SQL_LATEST = f"""
SELECT {_COLUMNS} FROM resource_history
WHERE resource_type = $1 AND resource_id = $2
ORDER BY version_id DESC
LIMIT 1
"""

SQL_GET_VERSION = f"""
SELECT {_COLUMNS} FROM resource_history
WHERE resource_type = $1 AND resource_id = $2 AND version_id = $3
"""

SQL_LIST_VERSIONS = f"""
SELECT {_COLUMNS} FROM resource_history
WHERE resource_type = $1 AND resource_id = $2
ORDER BY version_id ASC
"""


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_entry(row) -> VersionEntry:
    resource = row["resource"]
    if isinstance(resource, str):
        resource = json.loads(resource)
    return VersionEntry(
        resource_type=row["resource_type"],
        resource_id=row["resource_id"],
        version_id=row["version_id"],
        snapshot=resource,
        action=VersionAction(row["action"]),
        timestamp=_utc(row["timestamp"]),
    )


class PostgresHistoryStore(HistoryStore):
    """Version log stored in resource_history; snapshots are jsonb."""

    name = "postgres"

    def __init__(self, pg: PostgresService):
        self.pg = pg

    async def compare_and_append(self, resource_type, resource_id, expected_latest, snapshot, action):
        pool = self.pg.require_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                SQL_COMPARE_AND_APPEND,
                resource_type,
                resource_id,
                expected_latest,
                json.dumps(snapshot),
                action.value,
            )
        if row is None:
            return None
        return VersionEntry(
            resource_type=resource_type,
            resource_id=resource_id,
            version_id=row["version_id"],
            snapshot=snapshot,
            action=action,
            timestamp=_utc(row["timestamp"]),
        )

    async def latest_entry(self, resource_type, resource_id):
        pool = self.pg.require_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_LATEST, resource_type, resource_id)
        return _row_to_entry(row) if row else None

    async def get_version(self, resource_type, resource_id, version_id):
        pool = self.pg.require_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(SQL_GET_VERSION, resource_type, resource_id, version_id)
        return _row_to_entry(row) if row else None

    async def list_versions(self, resource_type, resource_id):
        pool = self.pg.require_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(SQL_LIST_VERSIONS, resource_type, resource_id)
        return [_row_to_entry(r) for r in rows]

    async def list_instance_history(self, resource_type, resource_id, limit, offset):
        return await self._page(
            "resource_type = $1 AND resource_id = $2",
            [resource_type, resource_id],
            "version_id DESC",
            limit,
            offset,
        )

    async def list_type_history(self, resource_type, since, limit, offset):
        where, args = "resource_type = $1", [resource_type]
        if since is not None:
            where += " AND timestamp >= $2"
            args.append(since)
        return await self._page(where, args, "timestamp DESC, version_id DESC", limit, offset)

    async def list_system_history(self, since, limit, offset):
        where, args = "TRUE", []
        if since is not None:
            where, args = "timestamp >= $1", [since]
        return await self._page(where, args, "timestamp DESC, version_id DESC", limit, offset)

    async def _page(
        self, where: str, args: list, order: str, limit: int, offset: int
    ) -> Tuple[List[VersionEntry], int]:
        n = len(args)
        count_sql = f"SELECT COUNT(*) FROM resource_history WHERE {where}"
        data_sql = (
            f"SELECT {_COLUMNS} FROM resource_history WHERE {where} "
            f"ORDER BY {order} LIMIT ${n + 1} OFFSET ${n + 2}"
        )
        pool = self.pg.require_pool()
        async with pool.acquire() as conn:
            async with conn.transaction(readonly=True):
                total = await conn.fetchval(count_sql, *args)
                rows = await conn.fetch(data_sql, *args, limit, offset)
        return [_row_to_entry(r) for r in rows], total

