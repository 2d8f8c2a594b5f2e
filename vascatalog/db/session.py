"""Database engine helpers."""

from __future__ import annotations

import os
from datetime import datetime
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine


DEFAULT_DATABASE_URL = "postgresql://user:pass@db:5432/catalog"


def create_engine_from_env() -> Engine:
    """Create an engine using the DATABASE_URL environment variable."""
    url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)
    return create_engine(url, pool_pre_ping=True, future=True)


def json_param(conn, name: str) -> str:
    """Placeholder for a JSON-encoded text parameter."""
    if conn.dialect.name == "postgresql":
        return f"CAST(:{name} AS JSONB)"
    return f":{name}"


def timestamp_param(conn, value: datetime | None):
    if value is None:
        return None
    plain = datetime.fromisoformat(value.isoformat())
    if conn.dialect.name == "sqlite":
        return plain.isoformat(" ")
    return plain


def decimal_param(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return str(value)
