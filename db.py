from __future__ import annotations

from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker


Base = declarative_base()

# Bound by init_engine(); modules import this name at import time.
SessionLocal = sessionmaker(autoflush=False, expire_on_commit=False)

_engine = None


def init_engine(database_url: str):
    global _engine

    kwargs = {"pool_pre_ping": True, "future": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}

    _engine = create_engine(database_url, **kwargs)
    SessionLocal.configure(bind=_engine)

    import models  # noqa: F401  (register tables)

    Base.metadata.create_all(_engine)
    return _engine


def ping_db() -> bool:
    if _engine is None:
        return False
    try:
        with _engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
