from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session

from app.portal.db import build_engine, build_sessionmaker


def database_url(explicit: str | None = None) -> str:
    return (explicit or os.environ.get("DATABASE_URL") or "sqlite:///portal.db").strip()


@contextmanager
def session_scope(db_url: str) -> Generator[Session, None, None]:
    """
    Standalone session for scripts (no Flask app needed). Commits on success.
    """
    engine = build_engine(db_url)
    s: Session = build_sessionmaker(engine)()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
