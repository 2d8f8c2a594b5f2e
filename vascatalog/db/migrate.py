"""Database migration helpers."""

from __future__ import annotations

import sys

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from vascatalog.db.session import create_engine_from_env
from vascatalog.db.tables import create_tables


def run_migrations(engine: Engine) -> None:
    """Create any catalog tables missing from the database."""
    create_tables(engine)


def main() -> None:
    engine = create_engine_from_env()
    try:
        run_migrations(engine)
    except SQLAlchemyError as exc:
        print(f"Migration failed: {exc}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
