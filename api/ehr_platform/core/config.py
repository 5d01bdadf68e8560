"""
Runtime settings loaded from the environment.
"""

import os
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Optional


class RecreatePolicy(str, Enum):
    """What record_create does when the latest version is a delete tombstone."""
    RESUME = "resume"   # append a create at latest+1
    REJECT = "reject"   # fail with ResourceConflictError


class HistoryBackend(str, Enum):
    POSTGRES = "postgres"
    MEMORY = "memory"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass
class Settings:
    """Service settings"""
    env: str = "development"
    database_url: Optional[str] = None
    pg_pool_min_size: int = 2
    pg_pool_max_size: int = 10
    pg_command_timeout: int = 30
    fhir_base_url: str = "/fhir"
    default_page_size: int = 20
    max_page_size: int = 100
    recreate_policy: RecreatePolicy = RecreatePolicy.RESUME
    history_backend: HistoryBackend = HistoryBackend.POSTGRES
    log_level: str = "INFO"
    log_format: str = "json"

    def __post_init__(self):
        if self.default_page_size < 1:
            raise ValueError("FHIR_DEFAULT_PAGE_SIZE must be >= 1")
        if self.max_page_size < self.default_page_size:
            raise ValueError("FHIR_MAX_PAGE_SIZE must be >= FHIR_DEFAULT_PAGE_SIZE")
        self.fhir_base_url = self.fhir_base_url.rstrip("/")

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            env=os.getenv("ENV", "development"),
            database_url=os.getenv("DATABASE_URL") or os.getenv("POSTGRES_DSN"),
            pg_pool_min_size=_env_int("PG_POOL_MIN_SIZE", 2),
            pg_pool_max_size=_env_int("PG_POOL_MAX_SIZE", 10),
            pg_command_timeout=_env_int("PG_COMMAND_TIMEOUT", 30),
            fhir_base_url=os.getenv("FHIR_BASE_URL", "/fhir"),
            default_page_size=_env_int("FHIR_DEFAULT_PAGE_SIZE", 20),
            max_page_size=_env_int("FHIR_MAX_PAGE_SIZE", 100),
            recreate_policy=RecreatePolicy(os.getenv("FHIR_RECREATE_POLICY", "resume").lower()),
            history_backend=HistoryBackend(os.getenv("HISTORY_BACKEND", "postgres").lower()),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings singleton; call get_settings.cache_clear() after changing env in tests."""
    return Settings.from_env()
