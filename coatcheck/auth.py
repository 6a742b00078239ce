from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from coatcheck.db import get_db
from coatcheck.dependencies import get_session_store, get_session_token
from coatcheck.models import User
from coatcheck.security.oidc import get_oidc_client
from coatcheck.security.sessions import SessionStore

logger = logging.getLogger(__name__)


class PermissionLevel(str, Enum):
    ADMIN = 'admin'
    MANAGER = 'manager'
    EMPLOYEE = 'employee'
    READ_ONLY = 'read-only'
    LOCAL_ADMIN = 'local-admin'


class Capability(str, Enum):
    ADMIN_AREA = 'admin_area'
    MANAGE_RECORDS = 'manage_records'
    MANAGE_USERS = 'manage_users'
    VIEW_ESTIMATES = 'view_estimates'
    MANAGE_ESTIMATES = 'manage_estimates'


CAPABILITIES_BY_LEVEL: dict[PermissionLevel, frozenset[Capability]] = {
    PermissionLevel.LOCAL_ADMIN: frozenset(Capability),
    PermissionLevel.ADMIN: frozenset(Capability),
    PermissionLevel.MANAGER: frozenset(
        {
            Capability.ADMIN_AREA,
            Capability.MANAGE_RECORDS,
            Capability.VIEW_ESTIMATES,
            Capability.MANAGE_ESTIMATES,
        }
    ),
    PermissionLevel.EMPLOYEE: frozenset({Capability.VIEW_ESTIMATES, Capability.MANAGE_ESTIMATES}),
    PermissionLevel.READ_ONLY: frozenset({Capability.VIEW_ESTIMATES}),
}


def permission_level_for(role: str | None, is_local_admin: int | bool | None) -> PermissionLevel:
    """Collapse the stored role string and local-admin flag into one level."""
    if is_local_admin:
        return PermissionLevel.LOCAL_ADMIN
    try:
        level = PermissionLevel((role or '').strip().lower())
    except ValueError:
        return PermissionLevel.READ_ONLY
    if level == PermissionLevel.LOCAL_ADMIN:
        # only the flag grants local-admin, never the role string
        return PermissionLevel.READ_ONLY
    return level


def capabilities_for(level: PermissionLevel) -> frozenset[Capability]:
    return CAPABILITIES_BY_LEVEL.get(level, frozenset())


@dataclass
class Principal:
    id: str
    role: str
    level: PermissionLevel
    kind: str
    is_local_admin: bool = False
    claims: dict = field(default_factory=dict)

    @property
    def capabilities(self) -> frozenset[Capability]:
        return capabilities_for(self.level)

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @property
    def display_name(self) -> str:
        first = (self.claims.get('first_name') or '').strip()
        last = (self.claims.get('last_name') or '').strip()
        name = f'{first} {last}'.strip()
        return name or self.claims.get('email') or self.id


def principal_from_session(payload: dict | None) -> Principal | None:
    if not payload:
        return None
    kind = payload.get('kind')
    if kind == 'local':
        user_id = payload.get('id')
        if not user_id:
            return None
        role = payload.get('role') or ''
        is_local_admin = bool(payload.get('is_local_admin'))
        level = PermissionLevel(payload.get('level') or permission_level_for(role, is_local_admin))
        return Principal(
            id=user_id,
            role=role,
            level=level,
            kind=kind,
            is_local_admin=is_local_admin,
            claims=payload.get('claims') or {},
        )
    if kind == 'federated':
        claims = payload.get('claims') or {}
        if not claims.get('sub') or not payload.get('expires_at'):
            return None
        is_local_admin = bool(payload.get('is_local_admin'))
        role = payload.get('role') or ''
        level = PermissionLevel(payload.get('level') or permission_level_for(role, is_local_admin))
        return Principal(
            id=claims['sub'],
            role=role,
            level=level,
            kind=kind,
            is_local_admin=is_local_admin,
            claims=claims,
        )
    return None


def _refresh_federated_session(payload: dict) -> dict:
    refresh_token = payload.get('refresh_token')
    client = get_oidc_client()
    if not refresh_token or client is None:
        raise ValueError('Session cannot be refreshed')
    tokens = client.refresh(refresh_token)
    refreshed = dict(payload)
    refreshed['access_token'] = tokens.access_token
    refreshed['refresh_token'] = tokens.refresh_token or refresh_token
    refreshed['expires_at'] = tokens.expires_at
    return refreshed


def get_current_principal(
    request: Request,
    store: SessionStore = Depends(get_session_store),
    db: Session = Depends(get_db),
) -> Principal:
    token = get_session_token(request)
    payload = store.get(token)
    principal = principal_from_session(payload)
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Unauthorized')

    user = db.get(User, principal.id)
    if user is None:
        # account was deleted after this session was issued
        store.destroy(token)
        db.commit()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Unauthorized')
    principal.role = user.role
    principal.is_local_admin = principal.is_local_admin or bool(user.is_local_admin)
    principal.level = permission_level_for(user.role, principal.is_local_admin)

    if principal.kind == 'federated' and int(time.time()) > int(payload['expires_at']):
        if principal.is_local_admin:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Session expired')
        try:
            payload = _refresh_federated_session(payload)
        except (ValueError, KeyError) as exc:
            logger.info('Federated session refresh failed for %s: %s', principal.id, exc)
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Unauthorized') from exc
        store.set(token, payload)
        db.commit()

    request.state.principal = principal
    return principal


def require_capability(*required: Capability):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not all(principal.can(capability) for capability in required):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Forbidden')
        return principal

    return _dep
