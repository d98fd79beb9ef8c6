"""
Engine and session wiring.

Request handlers share one session per app context (`db_session`). Scripts and
background batch runs open their own from the stored sessionmaker.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from flask import Flask, current_app, g
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker


def _engine_options(db_url: str) -> dict[str, object]:
    options: dict[str, object] = {"pool_pre_ping": True}
    if db_url.startswith("postgres"):
        # Ledger writes hold a connection for the length of a confirmation wait.
        options.update(pool_size=5, max_overflow=10, pool_timeout=30, pool_recycle=1800)
    return options


def init_db(app: Flask) -> None:
    db_url = app.config["DATABASE_URL"]
    engine = create_engine(db_url, **_engine_options(db_url))
    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    app.logger.debug("Database engine ready: dialect=%s", engine.dialect.name)


def db_session(app: Flask | None = None) -> Session:
    s: Session | None = g.get("db_session")
    if s is None:
        s = (app or current_app).extensions["sqlalchemy_sessionmaker"]()
        g.db_session = s
    return s


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = g.pop("db_session", None)
    if s is not None:
        s.close()


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """Commit on success, roll back on error, always close."""
    s: Session = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
