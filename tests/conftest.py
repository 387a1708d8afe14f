"""Pytest configuration and fixtures."""
import pytest
from fastapi.testclient import TestClient

from app import create_app
from config import Settings
from database import create_db_engine, init_db
from storage import ShardedStore


@pytest.fixture
def settings(tmp_path):
    """Settings pointing storage and the database at a per-test directory."""
    return Settings(
        storage_base_path=str(tmp_path / "data"),
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        shard_count=16,
        analysis_enabled=False,
    )


@pytest.fixture
def store(tmp_path):
    return ShardedStore(tmp_path / "data", shard_count=16)


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def client(settings):
    """Test client with lifespan (tables created, queue started) active."""
    with TestClient(create_app(settings)) as c:
        yield c
