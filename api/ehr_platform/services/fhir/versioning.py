"""
Version Tracker - append-only, gap-free resource version log

Features:
- create / update / delete recording with optimistic concurrency
- atomic compare-and-append in the storage backend
- delete tombstones (410 Gone) and configurable re-creation
- instance, type and system history listing
"""

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ehr_platform.core.config import RecreatePolicy
from ehr_platform.core.logging_config import get_logger
from ehr_platform.exceptions import (
    ResourceConflictError,
    ResourceGoneError,
    ResourceNotFoundError,
    VersionConflictError,
)
from .document import Document, clone

logger = get_logger(__name__)


class VersionAction(str, Enum):
    """Version log action"""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class VersionEntry:
    """One immutable row of the version log"""
    resource_type: str
    resource_id: str
    version_id: int
    snapshot: Document
    action: VersionAction = VersionAction.CREATE
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_deleted(self) -> bool:
        return self.action == VersionAction.DELETE

    @property
    def reference(self) -> str:
        return f"{self.resource_type}/{self.resource_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "version_id": self.version_id,
            "resource": self.snapshot,
            "action": self.action.value,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VersionEntry":
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        elif timestamp is None:
            timestamp = datetime.now(timezone.utc)
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        return cls(
            resource_type=data["resource_type"],
            resource_id=str(data["resource_id"]),
            version_id=int(data["version_id"]),
            snapshot=data.get("resource"),
            action=VersionAction(data.get("action", "create")),
            timestamp=timestamp,
        )


# ============================================
# Storage backends
# ============================================

class HistoryStore(ABC):
    """
    Persistence for the version log.

    compare_and_append is the only write and must be atomic: it appends
    expected_latest + 1 only when the current latest version of the key is
    expected_latest (0 meaning "no versions yet"), and returns None otherwise.
    List methods return (entries newest-first, total).
    """

    name = "abstract"

    @abstractmethod
    async def compare_and_append(
        self,
        resource_type: str,
        resource_id: str,
        expected_latest: int,
        snapshot: Document,
        action: VersionAction,
    ) -> Optional[VersionEntry]:
        ...

    @abstractmethod
    async def latest_entry(self, resource_type: str, resource_id: str) -> Optional[VersionEntry]:
        ...

    @abstractmethod
    async def get_version(
        self, resource_type: str, resource_id: str, version_id: int
    ) -> Optional[VersionEntry]:
        ...

    @abstractmethod
    async def list_versions(self, resource_type: str, resource_id: str) -> List[VersionEntry]:
        """All versions of one resource, ascending by version id."""

    @abstractmethod
    async def list_instance_history(
        self, resource_type: str, resource_id: str, limit: int, offset: int
    ) -> Tuple[List[VersionEntry], int]:
        ...

    @abstractmethod
    async def list_type_history(
        self, resource_type: str, since: Optional[datetime], limit: int, offset: int
    ) -> Tuple[List[VersionEntry], int]:
        ...

    @abstractmethod
    async def list_system_history(
        self, since: Optional[datetime], limit: int, offset: int
    ) -> Tuple[List[VersionEntry], int]:
        ...


class InMemoryHistoryStore(HistoryStore):
    """Process-local store, one asyncio.Lock per resource key."""

    name = "memory"

    def __init__(self):
        self._logs: Dict[Tuple[str, str], List[VersionEntry]] = defaultdict(list)
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    @staticmethod
    def _copy(entry: VersionEntry) -> VersionEntry:
        return VersionEntry(
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            version_id=entry.version_id,
            snapshot=clone(entry.snapshot),
            action=entry.action,
            timestamp=entry.timestamp,
        )

    async def compare_and_append(self, resource_type, resource_id, expected_latest, snapshot, action):
        key = (resource_type, resource_id)
        async with self._locks[key]:
            log = self._logs[key]
            current = log[-1].version_id if log else 0
            if current != expected_latest:
                return None
            entry = VersionEntry(
                resource_type=resource_type,
                resource_id=resource_id,
                version_id=current + 1,
                snapshot=clone(snapshot),
                action=action,
            )
            log.append(entry)
            return self._copy(entry)

    async def latest_entry(self, resource_type, resource_id):
        log = self._logs.get((resource_type, resource_id))
        return self._copy(log[-1]) if log else None

    async def get_version(self, resource_type, resource_id, version_id):
        log = self._logs.get((resource_type, resource_id)) or []
        if 1 <= version_id <= len(log):
            return self._copy(log[version_id - 1])
        return None

    async def list_versions(self, resource_type, resource_id):
        return [self._copy(e) for e in self._logs.get((resource_type, resource_id)) or []]

    @staticmethod
    def _page(entries, limit, offset):
        return entries[offset:offset + limit], len(entries)

    async def list_instance_history(self, resource_type, resource_id, limit, offset):
        log = self._logs.get((resource_type, resource_id)) or []
        entries = [self._copy(e) for e in reversed(log)]
        return self._page(entries, limit, offset)

    def _filtered(self, resource_type=None, since=None):
        entries = [
            e
            for (rtype, _), log in self._logs.items()
            if resource_type is None or rtype == resource_type
            for e in log
            if since is None or e.timestamp >= since
        ]
        entries.sort(key=lambda e: (e.timestamp, e.version_id), reverse=True)
        return [self._copy(e) for e in entries]

    async def list_type_history(self, resource_type, since, limit, offset):
        return self._page(self._filtered(resource_type, since), limit, offset)

    async def list_system_history(self, since, limit, offset):
        return self._page(self._filtered(None, since), limit, offset)


# ============================================
# Tracker
# ============================================

class VersionTracker:
    """
    Records every resource mutation as a new version.

    Usage:
        tracker = VersionTracker(InMemoryHistoryStore())
        await tracker.record_create("Patient", "p1", {...})          # -> version 1
        v = await tracker.record_update("Patient", "p1", 1, {...})   # -> 2
        await tracker.record_delete("Patient", "p1", v)              # -> 3 (tombstone)

    Storage errors propagate unchanged; nothing is retried.
    """

    def __init__(self, store: HistoryStore, recreate_policy: RecreatePolicy = RecreatePolicy.RESUME):
        self.store = store
        self.recreate_policy = recreate_policy

    async def record_create(self, resource_type: str, resource_id: str, snapshot: Document) -> VersionEntry:
        """
        Append the create entry of a resource.

        A new key starts at version 1. When the latest entry is a delete
        tombstone, RESUME appends a create at latest+1 and REJECT raises.

        Raises:
            ResourceConflictError: the resource already exists.
        """
        latest = await self.store.latest_entry(resource_type, resource_id)
        expected = 0
        if latest is not None:
            if not latest.is_deleted or self.recreate_policy == RecreatePolicy.REJECT:
                logger.warning(
                    "version_create_conflict",
                    resource_type=resource_type,
                    resource_id=resource_id,
                    latest_version=latest.version_id,
                )
                raise ResourceConflictError(resource_type, resource_id, latest.version_id)
            expected = latest.version_id

        entry = await self.store.compare_and_append(
            resource_type, resource_id, expected, snapshot, VersionAction.CREATE
        )
        if entry is None:
            current = await self.store.latest_entry(resource_type, resource_id)
            logger.warning("version_create_conflict", resource_type=resource_type, resource_id=resource_id)
            raise ResourceConflictError(
                resource_type, resource_id, current.version_id if current else None
            )

        logger.info(
            "version_recorded",
            resource_type=resource_type,
            resource_id=resource_id,
            version_id=entry.version_id,
            action=entry.action.value,
        )
        return entry

    async def record_update(
        self,
        resource_type: str,
        resource_id: str,
        expected_version: int,
        new_snapshot: Document,
    ) -> int:
        """
        Append an update if expected_version is still the latest version.

        Returns:
            The new version id (expected_version + 1).

        Raises:
            VersionConflictError: expected_version is stale; nothing was appended.
            ResourceNotFoundError: no version exists for the key.
            ResourceGoneError: the latest version is a delete tombstone.
        """
        entry = await self._append_guarded(
            resource_type, resource_id, expected_version, new_snapshot, VersionAction.UPDATE
        )
        return entry.version_id

    async def record_delete(
        self,
        resource_type: str,
        resource_id: str,
        expected_version: int,
        snapshot: Document = None,
    ) -> int:
        """Append a delete tombstone; same contract as record_update."""
        entry = await self._append_guarded(
            resource_type, resource_id, expected_version, snapshot, VersionAction.DELETE
        )
        return entry.version_id

    async def _append_guarded(self, resource_type, resource_id, expected_version, snapshot, action):
        latest = await self.store.latest_entry(resource_type, resource_id)
        if latest is None:
            raise ResourceNotFoundError(resource_type, resource_id)
        if latest.is_deleted:
            raise ResourceGoneError(resource_type, resource_id, latest.version_id)
        if latest.version_id != expected_version:
            self._log_conflict(resource_type, resource_id, expected_version, latest.version_id)
            raise VersionConflictError(resource_type, resource_id, expected_version, latest.version_id)

        entry = await self.store.compare_and_append(
            resource_type, resource_id, expected_version, snapshot, action
        )
        if entry is None:
            # lost the race between the read above and the conditional append
            current = await self.store.latest_entry(resource_type, resource_id)
            current_version = current.version_id if current else None
            self._log_conflict(resource_type, resource_id, expected_version, current_version)
            raise VersionConflictError(resource_type, resource_id, expected_version, current_version)

        logger.info(
            "version_recorded",
            resource_type=resource_type,
            resource_id=resource_id,
            version_id=entry.version_id,
            action=action.value,
        )
        return entry

    @staticmethod
    def _log_conflict(resource_type, resource_id, expected, current):
        logger.warning(
            "version_conflict",
            resource_type=resource_type,
            resource_id=resource_id,
            expected_version=expected,
            current_version=current,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_history(self, resource_type: str, resource_id: str) -> List[VersionEntry]:
        """All versions ascending by version id (empty for an unknown key)."""
        return await self.store.list_versions(resource_type, resource_id)

    async def get_version(self, resource_type: str, resource_id: str, version_id: int) -> VersionEntry:
        entry = await self.store.get_version(resource_type, resource_id, version_id)
        if entry is None:
            raise ResourceNotFoundError(resource_type, resource_id, version_id)
        return entry

    async def get_latest(self, resource_type: str, resource_id: str) -> VersionEntry:
        entry = await self.store.latest_entry(resource_type, resource_id)
        if entry is None:
            raise ResourceNotFoundError(resource_type, resource_id)
        return entry

    async def list_instance_history(
        self, resource_type: str, resource_id: str, limit: int, offset: int = 0
    ) -> Tuple[List[VersionEntry], int]:
        return await self.store.list_instance_history(resource_type, resource_id, limit, offset)

    async def list_type_history(
        self, resource_type: str, since: Optional[datetime] = None, limit: int = 20, offset: int = 0
    ) -> Tuple[List[VersionEntry], int]:
        return await self.store.list_type_history(resource_type, since, limit, offset)

    async def list_system_history(
        self, since: Optional[datetime] = None, limit: int = 20, offset: int = 0
    ) -> Tuple[List[VersionEntry], int]:
        return await self.store.list_system_history(since, limit, offset)
