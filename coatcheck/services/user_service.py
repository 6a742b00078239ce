from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from coatcheck.models import LOCAL_ADMIN_ID, User, UserRole
from coatcheck.security.passwords import hash_password

logger = logging.getLogger(__name__)

LOCAL_ADMIN_EMAIL = 'admin@coatcheck.local'


def list_users(db: Session) -> list[User]:
    return db.execute(select(User).order_by(User.created_at.asc(), User.id.asc())).scalars().all()


def get_user(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if not user:
        raise LookupError('User not found')
    return user


def find_user_by_username(db: Session, username: str) -> User | None:
    normalized = (username or '').strip().lower()
    if not normalized:
        return None
    return db.execute(select(User).where(func.lower(User.username) == normalized)).scalars().first()


def is_federated(user: User) -> bool:
    return not user.is_local_admin and user.password_hash is None


def create_user(
    db: Session,
    *,
    username: str,
    password: str,
    role: str,
    email: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
) -> User:
    if find_user_by_username(db, username):
        raise ValueError('Username is already taken')
    user = User(
        username=username.strip(),
        password_hash=hash_password(password),
        role=role,
        email=email,
        first_name=first_name,
        last_name=last_name,
        is_local_admin=0,
    )
    db.add(user)
    db.flush()
    return user


def update_user(db: Session, user_id: str, payload) -> User:
    user = get_user(db, user_id)
    sent = payload.model_fields_set
    if 'role' in sent and payload.role is not None:
        user.role = payload.role.value
    if 'password' in sent and payload.password:
        if is_federated(user):
            raise ValueError('Federated users sign in with their identity provider')
        user.password_hash = hash_password(payload.password)
    for field_name in ('email', 'first_name', 'last_name'):
        if field_name in sent:
            setattr(user, field_name, getattr(payload, field_name))
    db.flush()
    return user


def delete_user(db: Session, user_id: str, *, actor_id: str) -> None:
    user = get_user(db, user_id)
    if user.id == actor_id:
        raise PermissionError('You cannot delete your own account')
    if user.is_local_admin:
        raise PermissionError('The local admin cannot be deleted')
    if is_federated(user):
        raise PermissionError('Federated users cannot be deleted; lower their role instead')
    db.delete(user)
    db.flush()


def upsert_federated_user(db: Session, claims: dict) -> User:
    """Create or refresh the user row for an identity-provider subject.

    Profile fields follow the provider on every login; the role is only set
    when the user is first seen.
    """
    user = db.get(User, claims['sub'])
    if user is None:
        user = User(id=claims['sub'], role=UserRole.READ_ONLY.value, is_local_admin=0)
        db.add(user)
        logger.info('Created federated user %s', claims['sub'])
    user.email = claims.get('email')
    user.first_name = claims.get('first_name')
    user.last_name = claims.get('last_name')
    user.profile_image_url = claims.get('profile_image_url')
    db.flush()
    return user


def get_local_admin(db: Session) -> User | None:
    return db.execute(select(User).where(User.is_local_admin == 1).order_by(User.created_at.asc())).scalars().first()


def ensure_local_admin(db: Session, password: str | None) -> tuple[User, bool]:
    """Create the local-admin singleton, or repair the flag, role and hash on an existing one."""
    user = get_local_admin(db) or db.get(User, LOCAL_ADMIN_ID)
    created = user is None
    if created:
        user = User(
            id=LOCAL_ADMIN_ID,
            email=LOCAL_ADMIN_EMAIL,
            first_name='Admin',
            last_name='User',
        )
        db.add(user)
    user.role = UserRole.ADMIN.value
    user.is_local_admin = 1
    if password and not user.password_hash:
        user.password_hash = hash_password(password)
    db.flush()
    return user, created
