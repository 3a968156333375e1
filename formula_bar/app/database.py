from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from flask import Flask
from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, scoped_session, sessionmaker

from .config import DEFAULT_CONFIG

_engine = None
SessionLocal = scoped_session(sessionmaker(autoflush=False))


def _ensure_sqlite_dir(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def init_db(app: Flask) -> None:
    global _engine
    database_url = app.config.get("DATABASE_URL", DEFAULT_CONFIG["DATABASE_URL"])
    _ensure_sqlite_dir(database_url)
    _engine = create_engine(
        database_url,
        echo=bool(app.config.get("DATABASE_ECHO", False)),
        future=True,
    )
    SessionLocal.remove()
    SessionLocal.configure(bind=_engine)
    from . import models  # noqa: F401

    models.Base.metadata.create_all(bind=_engine)


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
