from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator

from flask import Flask, current_app, g
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

# The audit trail is the only thing stored locally; a small pool is plenty.
_POSTGRES_POOL = {"pool_size": 3, "max_overflow": 5, "pool_recycle": 1800, "pool_timeout": 15}


def build_engine(db_url: str) -> Engine:
    kwargs: dict[str, object] = {"future": True, "pool_pre_ping": True}
    if db_url.startswith("postgres"):
        kwargs.update(_POSTGRES_POOL)
    elif db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(db_url, **kwargs)


def init_db(app: Flask) -> None:
    engine = build_engine(app.config["DATABASE_URL"])
    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )


def db_session() -> Session:
    """Audit session for the current request, opened on first use."""
    s: Session | None = getattr(g, "db_session", None)
    if s is None:
        s = current_app.extensions["sqlalchemy_sessionmaker"]()
        g.db_session = s
    return s


def teardown_db_session(exc: BaseException | None) -> None:
    s: Session | None = g.pop("db_session", None)
    if s is None:
        return
    # Events are only kept when the handler committed them.
    if exc is not None:
        s.rollback()
    s.close()


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """Session outside a request (scripts, tests); commits on success."""
    s: Session = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
