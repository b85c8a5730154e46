from __future__ import annotations

import os
from contextlib import contextmanager

from sqlalchemy.orm import Session

from app.roster.db import build_engine, make_sessionmaker


def database_url() -> str:
    return (os.environ.get("DATABASE_URL") or "sqlite:///roster.db").strip()


@contextmanager
def script_session(db_url: str):
    engine = build_engine(db_url)
    sm = make_sessionmaker(engine)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
