"""
Shared pytest fixtures for all tests.

This module provides reusable fixtures for:
- Temporary directories and files
- Catalog databases with sample careers
- Engines wired to real or in-memory stores

Fixtures are designed to be composable - use `catalog_db` for database
tests, and `engine` on top of it for recommendation tests.
"""

import tempfile
from pathlib import Path
from typing import Generator

import pytest

from src.careermatch.database import CareerDatabase
from src.careermatch.knn import (
    MemoryCacheStore,
    RecommendationEngine,
    ResultCache,
    SQLiteCacheStore,
)
from src.careermatch.models import CareerProfile, UserProfile

from .factories import (
    generate_distant_careers,
    generate_software_engineer_career,
    generate_software_engineer_user,
)


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


# =============================================================================
# Basic Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Provide a temporary directory for test files.

    The directory is automatically cleaned up after the test completes.

    Yields:
        Path to temporary directory
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db_path(temp_dir: Path) -> Path:
    """Provide a path for a temporary test database."""
    return temp_dir / "test_careers.db"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def empty_db(temp_db_path: Path) -> CareerDatabase:
    """
    Provide an empty test database.

    Schema is created but no careers are inserted.
    """
    return CareerDatabase(str(temp_db_path))


@pytest.fixture
def catalog_db(temp_db_path: Path) -> CareerDatabase:
    """
    Provide a database with a small, deterministic catalog.

    Contains a Software Engineer career that closely matches
    `software_engineer_user` plus three distant careers.
    """
    db = CareerDatabase(str(temp_db_path))
    db.upsert_career(generate_software_engineer_career())
    for career in generate_distant_careers():
        db.upsert_career(career)
    return db


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def engine(catalog_db: CareerDatabase, clock: FakeClock) -> Generator[RecommendationEngine, None, None]:
    """
    Provide an engine backed by `catalog_db` with a SQLite result cache.

    The cache uses the `clock` fixture so tests can expire entries.
    """
    engine = RecommendationEngine(
        catalog=catalog_db,
        cache=ResultCache(SQLiteCacheStore(catalog_db), clock=clock),
        audit=catalog_db,
    )
    yield engine
    engine.close()


@pytest.fixture
def memory_engine(catalog_db: CareerDatabase, clock: FakeClock) -> Generator[RecommendationEngine, None, None]:
    """Provide an engine with an in-memory result cache and no audit store."""
    engine = RecommendationEngine(
        catalog=catalog_db,
        cache=ResultCache(MemoryCacheStore(clock=clock), clock=clock),
    )
    yield engine
    engine.close()


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def software_engineer_user() -> UserProfile:
    return generate_software_engineer_user()


@pytest.fixture
def software_engineer_career() -> CareerProfile:
    return generate_software_engineer_career()
