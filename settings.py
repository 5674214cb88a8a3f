"""
Centralized configuration for org scoping and import tuning.
"""
from __future__ import annotations

import os
from typing import Any, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


DEFAULT_ORG_ID: str = os.getenv("DEFAULT_ORG_ID") or "default-org"

# Rows per bulk insert; a failing chunk is recorded as a whole.
IMPORT_CHUNK_SIZE: int = _env_int("IMPORT_CHUNK_SIZE", 50)

# Emails per existence query during customer resolution.
CUSTOMER_LOOKUP_BATCH_SIZE: int = _env_int("CUSTOMER_LOOKUP_BATCH_SIZE", 200)

IMPORT_MAX_UPLOAD_BYTES: int = _env_int("IMPORT_MAX_UPLOAD_BYTES", 50 * 1024 * 1024)
IMPORT_PREVIEW_ROWS: int = _env_int("IMPORT_PREVIEW_ROWS", 10)

ALLOWED_UPLOAD_EXTENSIONS: tuple[str, ...] = ("csv", "tsv", "txt")

LOG_LEVEL: str = (os.getenv("LOG_LEVEL") or "INFO").upper()

# Browser origins allowed to call the import endpoints, comma separated.
CORS_ORIGINS: list[str] = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5000").split(",")
    if origin.strip()
] or ["http://localhost:3000"]


def sanitize_org_id(value: Optional[Any]) -> Optional[str]:
    """Normalize raw IDs (strip whitespace, lower-case)."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    text = str(value).strip()
    if not text:
        return None
    return text.lower()


def resolve_org_id(*candidates: Optional[Any]) -> str:
    """
    Pick the first usable org identifier from candidates, otherwise fall back to DEFAULT_ORG_ID.
    """
    for candidate in candidates:
        normalized = sanitize_org_id(candidate)
        if normalized:
            return normalized
    return DEFAULT_ORG_ID
