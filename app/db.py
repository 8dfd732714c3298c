from __future__ import annotations

from collections.abc import Iterator

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.config import settings
from app.models import Base


def build_engine(url: str, **kwargs) -> Engine:
    if url.startswith('sqlite'):
        kwargs.setdefault('connect_args', {'check_same_thread': False})
        engine = create_engine(url, **kwargs)

        @event.listens_for(engine, 'connect')
        def _enable_foreign_keys(dbapi_connection, _record) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute('PRAGMA foreign_keys=ON')
            cursor.close()

        return engine

    kwargs.setdefault('pool_pre_ping', True)
    return create_engine(url, **kwargs)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


engine = build_engine(settings.database_url_normalized)
SessionLocal = build_session_factory(engine)


def get_db(request: Request) -> Iterator[Session]:
    factory = getattr(request.app.state, 'session_factory', None) or SessionLocal
    db = factory()
    try:
        yield db
    finally:
        db.close()
