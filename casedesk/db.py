from __future__ import annotations

from collections.abc import Iterator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from casedesk.config import settings
from casedesk.models import Base

_MEMORY_URLS = {'sqlite://', 'sqlite:///:memory:'}


def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA journal_mode=WAL')
    cursor.execute('PRAGMA synchronous=NORMAL')
    cursor.close()


def build_engine(url: str) -> Engine:
    if not url.startswith('sqlite'):
        return create_engine(url, pool_pre_ping=True)

    # The sync scheduler runs on its own thread.
    connect_args = {'check_same_thread': False}
    if url in _MEMORY_URLS:
        return create_engine(url, connect_args=connect_args, poolclass=StaticPool)

    engine = create_engine(url, connect_args=connect_args)
    event.listen(engine, 'connect', _set_sqlite_pragmas)
    return engine


engine = build_engine(settings.database_url_normalized)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


def configure_engine(url: str) -> Engine:
    global engine
    engine = build_engine(url)
    SessionLocal.configure(bind=engine)
    return engine


def init_db(bind: Engine | None = None) -> None:
    Base.metadata.create_all(bind=bind or engine)


def get_db() -> Iterator[Session]:
    with SessionLocal() as db:
        yield db
