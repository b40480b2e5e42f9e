"""Pytest configuration and fixtures for Fracture tests."""

from datetime import datetime
from pathlib import Path

import pytest


def pytest_configure(config):
    """Register custom test markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests that do not require external dependencies"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests combining multiple components"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take significant time (>5 seconds)"
    )


@pytest.fixture
def test_domain():
    """Single-channel cognitive domain with low thresholds and short dwell."""
    from fracture.domains import get_domain

    return get_domain(
        "cognitive",
        channels=("signal",),
        thresholds={"gentle": 0.3, "moderate": 0.6, "aggressive": 0.9},
        hysteresis_count=3,
        crisis_dwell_evaluations=5,
        recovery_dwell_evaluations=3,
    )


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Point the user config file at a temporary location."""
    config_path = tmp_path / "config.toml"
    monkeypatch.setenv("FRACTURE_CONFIG", str(config_path))
    return config_path


# =============================================================================
# Database Test Fixtures
# =============================================================================


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database path for testing."""
    db_path = tmp_path / f"test_fracture_{datetime.now().timestamp()}.db"

    yield db_path

    if db_path.exists():
        db_path.unlink()
    for ext in ["-wal", "-shm"]:
        wal_file = Path(str(db_path) + ext)
        if wal_file.exists():
            wal_file.unlink()


@pytest.fixture
def db_session(temp_db):
    """Create fresh database session for each test with proper isolation."""
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker

    from fracture.database.models import Base

    engine = create_engine(f"sqlite:///{temp_db}")
    Base.metadata.create_all(engine)

    Session = sessionmaker(bind=engine)
    session = Session()

    yield session

    session.close()
    engine.dispose()


@pytest.fixture
def initialized_db(temp_db):
    """Initialize the global session factory against a temporary database."""
    from fracture.database.session import cleanup_database, init_database

    cleanup_database()
    init_database(str(temp_db))

    yield temp_db

    cleanup_database()
