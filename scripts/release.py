"""
Release step: bring the audit_events schema up to date.

The backoffice keeps nothing else locally, so this only runs Alembic against
DATABASE_URL. Production refuses sqlite.

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def alembic_config(db_url: str):
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    return cfg


def run_release() -> None:
    from alembic import command

    db_url = (os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL is required to run migrations.")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to migrate sqlite in production; point DATABASE_URL at Postgres.")

    print(f"Migrating audit trail (ENV={env or 'unset'})", flush=True)
    command.upgrade(alembic_config(db_url), "head")
    print("Audit trail schema at head.", flush=True)


if __name__ == "__main__":
    run_release()
