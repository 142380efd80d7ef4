"""
Pytest configuration and shared fixtures for the fleet inventory test suite.

This module provides:
- Vehicle store fixtures (in-memory and SQLite-backed)
- Media manager and service fixtures writing into a temporary directory
- FastAPI test client fixtures built with create_app
- Payload and file factories
"""

from datetime import datetime
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from fleet_inventory.main import create_app
from fleet_inventory.services.media_manager import MediaAttachmentManager, MediaUpload
from fleet_inventory.services.sql_vehicle_store import SqlVehicleStore
from fleet_inventory.services.vehicle_service import VehicleService
from fleet_inventory.services.vehicle_store import InMemoryVehicleStore, VehicleStore

# Test Database Configuration
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Smallest valid-looking payloads; content is never decoded
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
MP4_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 32


def parse_timestamp(value: str) -> datetime:
    """fromisoformat before 3.11 does not accept the trailing Z."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@pytest.fixture
def upload_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def memory_store() -> InMemoryVehicleStore:
    return InMemoryVehicleStore()


@pytest_asyncio.fixture
async def sql_store() -> AsyncGenerator[SqlVehicleStore, None]:
    """SQLite in-memory store with the schema created."""
    store = SqlVehicleStore(TEST_DATABASE_URL)
    await store.startup()
    yield store
    await store.shutdown()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request) -> AsyncGenerator[VehicleStore, None]:
    """Runs a store test once per backend."""
    if request.param == "memory":
        yield InMemoryVehicleStore()
        return
    sql = SqlVehicleStore(TEST_DATABASE_URL)
    await sql.startup()
    yield sql
    await sql.shutdown()


@pytest.fixture
def media_manager(memory_store, upload_dir) -> MediaAttachmentManager:
    return MediaAttachmentManager(memory_store, upload_dir)


@pytest.fixture
def vehicle_service(memory_store, media_manager) -> VehicleService:
    return VehicleService(memory_store, media_manager)


@pytest.fixture
def app(memory_store, upload_dir) -> FastAPI:
    return create_app(store=memory_store, upload_dir=upload_dir, rate_limit_enabled=False)


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """Synchronous test client; the context manager runs the lifespan."""
    with TestClient(app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client


# Test Data Factories
@pytest.fixture
def vehicle_fields():
    """Returns a factory of valid creation fields; keyword overrides win."""
    def _factory(**overrides):
        fields = {
            "make": "Toyota",
            "model": "Camry",
            "year": 2022,
            "licensePlate": "ABC-1234",
            "status": "available",
        }
        fields.update(overrides)
        return fields
    return _factory


@pytest.fixture
def png_upload():
    def _factory(name: str = "front.png") -> MediaUpload:
        return MediaUpload(content=PNG_BYTES, filename=name, content_type="image/png")
    return _factory


def stored_files(directory) -> list:
    return sorted(p.name for p in directory.iterdir())
