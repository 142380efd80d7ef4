import os
from pathlib import Path
from typing import List

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./fleet_inventory.db"


def is_production() -> bool:
    """Detects if running in production via PRODUCTION variable"""
    return os.getenv("PRODUCTION", "false").lower() == "true"

def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()

def get_upload_dir() -> Path:
    """Returns the flat directory where uploaded media files are written"""
    return Path(os.getenv("UPLOAD_DIR", "uploads")).resolve()

def get_store_backend() -> str:
    """Returns the vehicle store backend name ('memory' or 'sql')"""
    return os.getenv("VEHICLE_STORE_BACKEND", "memory").strip().lower()

def get_database_url() -> str:
    """Returns SQLAlchemy database URL for the sql store backend"""
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

def get_rate_limit() -> str:
    return os.getenv("RATE_LIMIT", "100/minute")

def is_rate_limit_enabled() -> bool:
    return os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"

def get_cors_origins() -> List[str]:
    """Comma separated list of allowed origins, '*' by default"""
    raw = os.getenv("CORS_ORIGINS", "*")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]

def get_port() -> int:
    return int(os.getenv("PORT", "8000"))
