from __future__ import annotations

import copy
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Protocol

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from coatcheck.config import settings
from coatcheck.models import WebSession


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def session_expiry() -> datetime:
    return _now() + timedelta(days=settings.session_ttl_days)


def new_session_token() -> str:
    return secrets.token_urlsafe(48)


def session_key(token: str) -> str:
    return hmac.new(settings.session_secret.encode('utf-8'), token.encode('utf-8'), hashlib.sha256).hexdigest()


class SessionStore(Protocol):
    def get(self, token: str | None) -> dict | None: ...

    def set(self, token: str, payload: dict, *, expires_at: datetime | None = None) -> None: ...

    def destroy(self, token: str | None) -> None: ...

    def regenerate(self, old_token: str | None, payload: dict) -> str: ...


class DatabaseSessionStore:
    """Sessions persisted in the ``sessions`` table.

    Only an HMAC of the cookie token is stored, so a copy of the table cannot
    be replayed as cookies. Callers own the transaction: writes are flushed,
    never committed here.
    """

    def __init__(self, db: Session, *, ip: str | None = None, user_agent: str | None = None) -> None:
        self.db = db
        self.ip = ip
        self.user_agent = user_agent

    def _row(self, token: str) -> WebSession | None:
        return self.db.execute(select(WebSession).where(WebSession.sid == session_key(token))).scalar_one_or_none()

    def get(self, token: str | None) -> dict | None:
        if not token:
            return None
        row = self._row(token)
        if not row:
            return None
        if _as_utc(row.expire) <= _now():
            self.db.delete(row)
            self.db.flush()
            return None
        return copy.deepcopy(row.sess)

    def set(self, token: str, payload: dict, *, expires_at: datetime | None = None) -> None:
        row = self._row(token)
        if row is None:
            row = WebSession(
                sid=session_key(token),
                sess=copy.deepcopy(payload),
                expire=expires_at or session_expiry(),
                ip=self.ip,
                user_agent=self.user_agent,
            )
            self.db.add(row)
        else:
            row.sess = copy.deepcopy(payload)
            if expires_at is not None:
                row.expire = expires_at
        self.db.flush()

    def destroy(self, token: str | None) -> None:
        if not token:
            return
        self.db.execute(delete(WebSession).where(WebSession.sid == session_key(token)))
        self.db.flush()

    def regenerate(self, old_token: str | None, payload: dict) -> str:
        self.destroy(old_token)
        token = new_session_token()
        self.set(token, payload, expires_at=session_expiry())
        return token

    def purge_expired(self) -> int:
        result = self.db.execute(delete(WebSession).where(WebSession.expire <= _now()))
        self.db.flush()
        return result.rowcount or 0


class MemorySessionStore:
    """Dict-backed store for development and tests.

    Not durable and not safe across processes or threads.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, tuple[dict, datetime]] = {}

    def get(self, token: str | None) -> dict | None:
        if not token:
            return None
        entry = self._sessions.get(session_key(token))
        if not entry:
            return None
        payload, expires_at = entry
        if expires_at <= _now():
            self._sessions.pop(session_key(token), None)
            return None
        return copy.deepcopy(payload)

    def set(self, token: str, payload: dict, *, expires_at: datetime | None = None) -> None:
        key = session_key(token)
        if expires_at is None:
            existing = self._sessions.get(key)
            expires_at = existing[1] if existing else session_expiry()
        self._sessions[key] = (copy.deepcopy(payload), expires_at)

    def destroy(self, token: str | None) -> None:
        if token:
            self._sessions.pop(session_key(token), None)

    def regenerate(self, old_token: str | None, payload: dict) -> str:
        self.destroy(old_token)
        token = new_session_token()
        self.set(token, payload, expires_at=session_expiry())
        return token

    def __len__(self) -> int:
        return len(self._sessions)


@lru_cache(maxsize=1)
def get_memory_session_store() -> MemorySessionStore:
    return MemorySessionStore()


def set_session_cookie(response, token: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_seconds,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(
        settings.session_cookie_name,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
    )
