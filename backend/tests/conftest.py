"""Pytest fixtures for matching and feedback tests.

Provides reusable test fixtures for:
- In-memory catalog / training store adapters and a matcher over them
- SQLite-backed session factory with fresh tables per test
- SQL repositories seeded with a sample catalog
- FastAPI test client wired to the SQL repositories

Usage:
    def test_resolve(client, org_id):
        response = client.post(
            "/api/v1/matches/resolve",
            json={"query_text": "W236"},
            headers={"X-Org-ID": str(org_id)},
        )
        assert response.status_code == 200
"""

import os

# Set environment variables BEFORE any imports to ensure they take effect
# In-memory SQLite shares one connection (StaticPool), so every session sees the same tables
os.environ["DATABASE_URL"] = os.environ.get("PARTMATCH_TEST_DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_JSON", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from typing import Generator
from uuid import UUID, uuid4

from partmatch.config import Settings, get_settings
from partmatch.database import SessionLocal, engine
from partmatch.dependencies import get_catalog_provider, get_training_corpus, get_training_store
from partmatch.infrastructure.repositories import SqlCatalogProvider, SqlTrainingStore
from partmatch.main import app
from partmatch.matching.hybrid_matcher import HybridMatcher
from partmatch.matching.training_index import TrainingCorpus
from partmatch.models import Base, CatalogEntry

from tests.fixtures.matching import (
    SAMPLE_CATALOG,
    InMemoryCatalogProvider,
    InMemoryTrainingStore,
    sample_items,
)


@pytest.fixture
def org_id() -> UUID:
    return uuid4()


@pytest.fixture
def other_org_id() -> UUID:
    return uuid4()


@pytest.fixture
def settings() -> Settings:
    """Default settings; single batch worker keeps SQLite access sequential."""
    return Settings(BATCH_MAX_WORKERS=1, CATALOG_SNAPSHOT_TTL_SECONDS=0, TRAINING_SNAPSHOT_TTL_SECONDS=0)


# =============================================================================
# IN-MEMORY ADAPTERS
# =============================================================================

@pytest.fixture
def catalog(org_id: UUID) -> InMemoryCatalogProvider:
    """In-memory catalog provider seeded with the sample catalog."""
    provider = InMemoryCatalogProvider()
    provider.add(org_id, *sample_items())
    return provider


@pytest.fixture
def store() -> InMemoryTrainingStore:
    return InMemoryTrainingStore()


@pytest.fixture
def matcher(catalog, store, settings) -> HybridMatcher:
    return HybridMatcher(catalog, store, settings)


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture(scope="function")
def session_factory() -> Generator:
    """Session factory over a fresh schema.

    Creates all tables before the test and drops them after.
    Each test gets a clean database state.
    """
    Base.metadata.create_all(bind=engine)
    try:
        yield SessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def seeded_catalog(db_session: Session, org_id: UUID):
    """Insert the sample catalog for ``org_id``."""
    entries = [
        CatalogEntry(
            id=entry_id,
            org_id=org_id,
            sku=sku,
            name=name,
            manufacturer=manufacturer,
            category=category,
        )
        for entry_id, sku, name, manufacturer, category in SAMPLE_CATALOG
    ]
    db_session.add_all(entries)
    db_session.commit()
    return entries


@pytest.fixture
def sql_catalog(session_factory, settings) -> SqlCatalogProvider:
    return SqlCatalogProvider(session_factory, settings)


@pytest.fixture
def sql_store(session_factory) -> SqlTrainingStore:
    return SqlTrainingStore(session_factory)


@pytest.fixture
def sql_matcher(sql_catalog, sql_store, settings, seeded_catalog) -> HybridMatcher:
    return HybridMatcher(sql_catalog, sql_store, settings)


# =============================================================================
# HTTP CLIENT
# =============================================================================

@pytest.fixture(scope="function")
def client(sql_catalog, sql_store, settings, seeded_catalog) -> Generator[TestClient, None, None]:
    """Test client wired to the SQL repositories.

    The lifespan is not run; providers come from dependency overrides.
    """
    app.dependency_overrides[get_catalog_provider] = lambda: sql_catalog
    app.dependency_overrides[get_training_store] = lambda: sql_store
    corpus = TrainingCorpus(sql_store, settings)
    app.dependency_overrides[get_training_corpus] = lambda: corpus
    app.dependency_overrides[get_settings] = lambda: settings
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
