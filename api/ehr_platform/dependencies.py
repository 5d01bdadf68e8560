"""
FastAPI dependencies shared by routers.
"""

from typing import Optional

from fastapi import Depends

from ehr_platform.core.config import HistoryBackend, Settings, get_settings
from ehr_platform.exceptions import StorageUnavailableError
from ehr_platform.services.postgres_service import get_pg
from ehr_platform.services.fhir.pg_history import PostgresHistoryStore
from ehr_platform.services.fhir.versioning import HistoryStore, InMemoryHistoryStore, VersionTracker


_memory_store: Optional[InMemoryHistoryStore] = None


def get_memory_store() -> InMemoryHistoryStore:
    """Process-wide in-memory version log (HISTORY_BACKEND=memory)."""
    global _memory_store
    if _memory_store is None:
        _memory_store = InMemoryHistoryStore()
    return _memory_store


def reset_memory_store():
    global _memory_store
    _memory_store = None


async def get_history_store(settings: Settings = Depends(get_settings)) -> HistoryStore:
    if settings.history_backend == HistoryBackend.MEMORY:
        return get_memory_store()
    pg = await get_pg()
    if not pg.is_available:
        raise StorageUnavailableError("postgres")
    return PostgresHistoryStore(pg)


async def get_tracker(
    store: HistoryStore = Depends(get_history_store),
    settings: Settings = Depends(get_settings),
) -> VersionTracker:
    return VersionTracker(store, recreate_policy=settings.recreate_policy)
