from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.auth import Principal, Role
from app.config import settings
from app.db import SessionLocal
from app.models import User, WebSession

BEARER_PREFIX = 'bearer '


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive timestamps.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _session_expiry() -> datetime:
    return _now() + timedelta(minutes=settings.session_ttl_minutes)


def create_web_session(db: Session, user_id: int) -> str:
    token = secrets.token_urlsafe(48)
    db.add(WebSession(session_token=token, user_id=user_id, expires_at=_session_expiry()))
    db.flush()
    return token


def bearer_token(request: Request) -> str | None:
    header = request.headers.get('authorization') or ''
    if not header.lower().startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX) :].strip()
    return token or None


def load_principal_from_token(db: Session, token: str | None) -> Principal | None:
    if not token:
        return None

    row = db.execute(
        select(WebSession, User)
        .join(User, User.id == WebSession.user_id)
        .where(WebSession.session_token == token)
    ).one_or_none()
    if not row:
        return None

    web_session, user = row
    now = _now()
    if web_session.revoked_at is not None or _aware(web_session.expires_at) <= now:
        return None
    if not user.active:
        return None

    web_session.last_seen_at = now
    web_session.expires_at = _session_expiry()
    return Principal(
        id=user.id,
        username=user.username,
        full_name=user.full_name,
        role=Role(user.role.value if hasattr(user.role, 'value') else user.role),
        active=user.active,
    )


def install_auth_session_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def auth_session_middleware(request: Request, call_next):
        token = bearer_token(request)
        request.state.principal = None
        if token:
            factory = getattr(request.app.state, 'session_factory', None) or SessionLocal
            with factory() as db:
                request.state.principal = load_principal_from_token(db, token)
                db.commit()
        return await call_next(request)
