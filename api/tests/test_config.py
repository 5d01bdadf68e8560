"""
Settings tests
"""

import pytest

from ehr_platform.core.config import HistoryBackend, RecreatePolicy, Settings


class TestSettings:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ENV", "production")
        monkeypatch.setenv("FHIR_BASE_URL", "/api/fhir/")
        monkeypatch.setenv("FHIR_DEFAULT_PAGE_SIZE", "50")
        monkeypatch.setenv("FHIR_MAX_PAGE_SIZE", "200")
        monkeypatch.setenv("FHIR_RECREATE_POLICY", "REJECT")
        monkeypatch.setenv("HISTORY_BACKEND", "memory")
        monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db:5432/ehr")

        settings = Settings.from_env()

        assert settings.is_production
        assert settings.fhir_base_url == "/api/fhir"
        assert settings.default_page_size == 50
        assert settings.max_page_size == 200
        assert settings.recreate_policy == RecreatePolicy.REJECT
        assert settings.history_backend == HistoryBackend.MEMORY
        assert settings.database_url == "postgresql://u:p@db:5432/ehr"

    def test_defaults(self):
        settings = Settings()
        assert settings.recreate_policy == RecreatePolicy.RESUME
        assert settings.history_backend == HistoryBackend.POSTGRES
        assert not settings.is_production

    def test_blank_int_uses_default(self, monkeypatch):
        monkeypatch.setenv("FHIR_DEFAULT_PAGE_SIZE", " ")
        monkeypatch.setenv("HISTORY_BACKEND", "memory")
        assert Settings.from_env().default_page_size == 20

    @pytest.mark.parametrize("default,maximum", [(0, 100), (50, 10)])
    def test_page_size_validation(self, default, maximum):
        with pytest.raises(ValueError):
            Settings(default_page_size=default, max_page_size=maximum)

    def test_unknown_recreate_policy(self, monkeypatch):
        monkeypatch.setenv("FHIR_RECREATE_POLICY", "restart")
        with pytest.raises(ValueError):
            Settings.from_env()
