"""
Create the local audit table without Alembic (development and throwaway sqlite files).

Usage:
  python scripts/init_db.py
"""

import os
import sys
from pathlib import Path

from sqlalchemy import create_engine

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.backoffice.models import Base


def create_tables(*, database_url: str | None = None) -> None:
    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///backoffice.db").strip()
    engine = create_engine(db_url, future=True)
    Base.metadata.create_all(engine)
    engine.dispose()


def main() -> None:
    create_tables()
    print("Audit table ready.")


if __name__ == "__main__":
    main()
