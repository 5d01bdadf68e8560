"""
Pytest Configuration and Fixtures
"""

import asyncio
import os

import pytest
from fastapi.testclient import TestClient

# 테스트 환경 설정
os.environ["ENV"] = "test"
os.environ["HISTORY_BACKEND"] = "memory"
os.environ["FHIR_BASE_URL"] = "/fhir"
os.environ["LOG_LEVEL"] = "WARNING"

from ehr_platform.core.config import get_settings

get_settings.cache_clear()

from ehr_platform.main import app
from ehr_platform.dependencies import get_memory_store, reset_memory_store
from ehr_platform.services.fhir.versioning import InMemoryHistoryStore, VersionTracker


@pytest.fixture(autouse=True)
def fresh_memory_store():
    """Each test starts with an empty in-memory version log."""
    reset_memory_store()
    yield
    reset_memory_store()
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    """FastAPI test client"""
    return TestClient(app)


@pytest.fixture
def client_no_raise():
    """Test client that turns server exceptions into 500 responses."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def store():
    return InMemoryHistoryStore()


@pytest.fixture
def tracker(store):
    return VersionTracker(store)


@pytest.fixture
def app_tracker():
    """Tracker over the store the app itself serves from."""
    return VersionTracker(get_memory_store())


@pytest.fixture
def run():
    """Run a coroutine to completion from a sync test."""
    return asyncio.run


@pytest.fixture
def observation():
    return {
        "resourceType": "Observation",
        "id": "obs-1",
        "status": "draft",
        "code": {"coding": [{"system": "http://loinc.org", "code": "718-7"}]},
        "valueQuantity": {"value": 13.2, "unit": "g/dL"},
        "note": [{"text": "first"}, {"text": "second"}],
    }
