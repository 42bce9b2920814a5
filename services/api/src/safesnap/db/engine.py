"""SQLAlchemy engine setup."""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from services.api.src.safesnap.config import settings

_engine: Engine | None = None


def _enable_sqlite_fks(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(database_url: str | None = None) -> Engine:
    """Get or create the SQLAlchemy engine."""
    global _engine

    url = database_url or settings.database_url

    if _engine is None or database_url is not None:
        connect_args = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False

        engine = create_engine(url, connect_args=connect_args)
        if url.startswith("sqlite"):
            event.listen(engine, "connect", _enable_sqlite_fks)

        if database_url is None:
            _engine = engine
        return engine

    return _engine
