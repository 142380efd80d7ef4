import logging

import pytest
from pythonjsonlogger import jsonlogger

from fleet_inventory.core import environment
from fleet_inventory.core.logging import setup_logging
from fleet_inventory.main import build_store
from fleet_inventory.services.sql_vehicle_store import SqlVehicleStore
from fleet_inventory.services.vehicle_store import InMemoryVehicleStore


def test_defaults(monkeypatch):
    for name in ("PRODUCTION", "VEHICLE_STORE_BACKEND", "RATE_LIMIT", "RATE_LIMIT_ENABLED", "CORS_ORIGINS", "PORT"):
        monkeypatch.delenv(name, raising=False)

    assert environment.is_production() is False
    assert environment.get_store_backend() == "memory"
    assert environment.get_rate_limit() == "100/minute"
    assert environment.is_rate_limit_enabled() is True
    assert environment.get_cors_origins() == ["*"]
    assert environment.get_port() == 8000


def test_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("PRODUCTION", "TRUE")
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "media"))
    monkeypatch.setenv("VEHICLE_STORE_BACKEND", " SQL ")
    monkeypatch.setenv("CORS_ORIGINS", "http://localhost:5173, http://127.0.0.1:5173")

    assert environment.is_production() is True
    assert environment.get_upload_dir() == (tmp_path / "media").resolve()
    assert environment.get_store_backend() == "sql"
    assert environment.get_cors_origins() == ["http://localhost:5173", "http://127.0.0.1:5173"]


def test_build_store_backends(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

    assert isinstance(build_store("memory"), InMemoryVehicleStore)
    assert isinstance(build_store("sql"), SqlVehicleStore)
    with pytest.raises(ValueError):
        build_store("redis")


def test_setup_logging_installs_single_json_handler():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_logging("DEBUG")

        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, jsonlogger.JsonFormatter)
        assert root.level == logging.DEBUG
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
