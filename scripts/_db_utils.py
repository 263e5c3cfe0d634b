from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from app.spipuniform.db import build_engine, make_sessionmaker

DEFAULT_DB_URL = "sqlite:///spipuniform.db"


def resolve_db_url(explicit: str | None = None) -> str:
    return (explicit or os.environ.get("DATABASE_URL") or DEFAULT_DB_URL).strip()


@contextmanager
def script_session(db_url: str | None = None) -> Generator[Session, None, None]:
    """Commit on success, roll back on error; same engine settings as the app (SQLite FKs on)."""
    engine = build_engine(resolve_db_url(db_url))
    s: Session = make_sessionmaker(engine)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
