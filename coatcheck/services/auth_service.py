from __future__ import annotations

import hmac
import logging
import time
from datetime import timedelta
from functools import lru_cache

from sqlalchemy.orm import Session

from coatcheck.auth import Principal, capabilities_for, permission_level_for
from coatcheck.config import settings
from coatcheck.models import User
from coatcheck.security.oidc import TokenSet
from coatcheck.security.passwords import hash_password, verify_password
from coatcheck.services.audit_service import log_auth_event
from coatcheck.services.user_service import find_user_by_username, get_local_admin

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = 'Invalid username or password'
LOCAL_ADMIN_USERNAME = 'admin'


class LoginFailed(Exception):
    """Credentials were checked and rejected; the message is safe to show."""


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return hash_password('coatcheck-timing-equalizer')


def _user_claims(user: User) -> dict:
    return {
        'sub': user.id,
        'email': user.email,
        'first_name': user.first_name,
        'last_name': user.last_name,
        'profile_image_url': user.profile_image_url,
    }


def local_session_payload(user: User) -> dict:
    level = permission_level_for(user.role, user.is_local_admin)
    return {
        'kind': 'local',
        'id': user.id,
        'role': user.role,
        'level': level.value,
        'is_local_admin': bool(user.is_local_admin),
        'claims': {**_user_claims(user), 'username': user.username},
    }


def local_admin_session_payload(user: User) -> dict:
    expires_at = int(time.time() + timedelta(days=settings.session_ttl_days).total_seconds())
    return {
        'kind': 'federated',
        'claims': _user_claims(user),
        'is_local_admin': True,
        'role': user.role,
        'level': permission_level_for(user.role, True).value,
        'expires_at': expires_at,
        'access_token': None,
        'refresh_token': None,
    }


def federated_session_payload(user: User, tokens: TokenSet) -> dict:
    return {
        'kind': 'federated',
        'claims': _user_claims(user),
        'is_local_admin': bool(user.is_local_admin),
        'role': user.role,
        'level': permission_level_for(user.role, user.is_local_admin).value,
        'expires_at': tokens.expires_at,
        'access_token': tokens.access_token,
        'refresh_token': tokens.refresh_token,
    }


def claims_from_userinfo(userinfo: dict) -> dict:
    return {
        'sub': str(userinfo['sub']),
        'email': userinfo.get('email'),
        'first_name': userinfo.get('first_name') or userinfo.get('given_name'),
        'last_name': userinfo.get('last_name') or userinfo.get('family_name'),
        'profile_image_url': userinfo.get('profile_image_url') or userinfo.get('picture'),
    }


def authenticate_local(
    db: Session,
    username: str,
    password: str,
    *,
    ip: str | None = None,
    user_agent: str | None = None,
) -> dict:
    """Check a username/password pair and return the session payload.

    Raises ``LoginFailed`` for bad credentials. Anything else that goes wrong
    (hashing, database) propagates so the caller can report a server error.
    """
    username = (username or '').strip()
    user = find_user_by_username(db, username)

    if user is None or not user.password_hash:
        # spend the same hashing time as a real check
        verify_password(password or '', _dummy_hash())
        log_auth_event(
            db,
            strategy='local',
            attempted_username=username,
            success=False,
            failure_reason='UNKNOWN_USERNAME' if user is None else 'NO_PASSWORD',
            user_id=user.id if user else None,
            ip=ip,
            user_agent=user_agent,
        )
        raise LoginFailed(INVALID_CREDENTIALS)

    if not verify_password(password or '', user.password_hash):
        log_auth_event(
            db,
            strategy='local',
            attempted_username=username,
            success=False,
            failure_reason='BAD_PASSWORD',
            user_id=user.id,
            ip=ip,
            user_agent=user_agent,
        )
        raise LoginFailed(INVALID_CREDENTIALS)

    log_auth_event(
        db,
        strategy='local',
        attempted_username=username,
        success=True,
        user_id=user.id,
        ip=ip,
        user_agent=user_agent,
    )
    return local_session_payload(user)


def authenticate_local_admin(
    db: Session,
    username: str,
    password: str,
    *,
    ip: str | None = None,
    user_agent: str | None = None,
) -> dict:
    username = (username or '').strip()
    expected = settings.local_admin_password or ''
    username_ok = username.lower() == LOCAL_ADMIN_USERNAME
    password_ok = bool(expected) and hmac.compare_digest(
        (password or '').encode('utf-8'), expected.encode('utf-8')
    )
    if not (username_ok and password_ok):
        log_auth_event(
            db,
            strategy='local-admin',
            attempted_username=username,
            success=False,
            failure_reason='BAD_CREDENTIALS',
            ip=ip,
            user_agent=user_agent,
        )
        raise LoginFailed(INVALID_CREDENTIALS)

    user = get_local_admin(db)
    if user is None:
        log_auth_event(
            db,
            strategy='local-admin',
            attempted_username=username,
            success=False,
            failure_reason='NOT_CONFIGURED',
            ip=ip,
            user_agent=user_agent,
        )
        logger.warning('Local admin login attempted but no local admin row exists')
        raise LoginFailed('Local admin not configured')

    log_auth_event(
        db,
        strategy='local-admin',
        attempted_username=username,
        success=True,
        user_id=user.id,
        ip=ip,
        user_agent=user_agent,
    )
    return local_admin_session_payload(user)


def identity_for(db: Session, principal: Principal) -> dict:
    user = db.get(User, principal.id)
    claims = principal.claims
    return {
        'id': principal.id,
        'role': principal.role,
        'level': principal.level.value,
        'is_local_admin': principal.is_local_admin,
        'capabilities': sorted(capability.value for capability in capabilities_for(principal.level)),
        'username': user.username if user else claims.get('username'),
        'email': user.email if user else claims.get('email'),
        'first_name': user.first_name if user else claims.get('first_name'),
        'last_name': user.last_name if user else claims.get('last_name'),
        'profile_image_url': user.profile_image_url if user else claims.get('profile_image_url'),
    }
