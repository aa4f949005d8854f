"""
Pytest configuration and fixtures.
"""

import pytest

from autoapply.core.config import settings
from autoapply.repositories.memory import (
    InMemoryApplicationStore,
    InMemoryEmbeddingStore,
    InMemoryMatchCache,
    InMemoryMetricsStore,
    InMemoryPreferencesStore,
    InMemoryRunStore,
)
from autoapply.services.auto_apply_service import AutoApplyService


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    """Deterministic settings for every test: no pacing delay, metrics off, UTC quota window."""
    monkeypatch.setattr(settings, "submission_delay_ms", 0)
    monkeypatch.setattr(settings, "metrics_enabled", False)
    monkeypatch.setattr(settings, "quota_timezone", "UTC")
    monkeypatch.setattr(settings, "default_auto_apply_enabled", True)
    monkeypatch.setattr(settings, "default_auto_apply_min_score", 70)
    monkeypatch.setattr(settings, "default_max_applications_per_day", 5)
    yield


@pytest.fixture
def preferences_store():
    return InMemoryPreferencesStore()


@pytest.fixture
def embedding_store(preferences_store):
    return InMemoryEmbeddingStore(preferences=preferences_store)


@pytest.fixture
def application_store():
    return InMemoryApplicationStore()


@pytest.fixture
def run_store():
    return InMemoryRunStore()


@pytest.fixture
def metrics_store():
    return InMemoryMetricsStore()


@pytest.fixture
def match_cache():
    return InMemoryMatchCache()


@pytest.fixture
def auto_apply_service(preferences_store, application_store):
    return AutoApplyService(preferences_store, application_store, submission_delay_ms=0)
