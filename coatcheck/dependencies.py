from fastapi import Depends, Request
from sqlalchemy.orm import Session

from coatcheck.config import settings
from coatcheck.db import get_db
from coatcheck.security.sessions import DatabaseSessionStore, SessionStore, get_memory_session_store


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def get_session_token(request: Request) -> str | None:
    return request.cookies.get(settings.session_cookie_name)


def get_session_store(request: Request, db: Session = Depends(get_db)) -> SessionStore:
    if settings.session_store.strip().lower() == 'memory':
        return get_memory_session_store()
    return DatabaseSessionStore(db, ip=get_client_ip(request), user_agent=request.headers.get('user-agent'))
