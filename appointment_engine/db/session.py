from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

from appointment_engine.core.config import settings
from appointment_engine.db.base import Base


def build_engine(database_url: str, **kwargs):
    """Create an engine; SQLite gets foreign key enforcement."""
    backend = make_url(database_url).get_backend_name()
    connect_args = kwargs.pop("connect_args", {})
    if backend.startswith("postgresql"):
        connect_args.setdefault("options", "-c timezone=utc")
    elif backend == "sqlite":
        connect_args.setdefault("check_same_thread", False)

    engine = create_engine(
        database_url, pool_pre_ping=True, connect_args=connect_args, **kwargs
    )

    if backend == "sqlite":

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None) -> None:
    """Create all tables (models must be imported first)."""
    from appointment_engine.db import models  # noqa: F401 - register mappers

    Base.metadata.create_all(bind=bind or engine)
