from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from coatcheck.auth import Capability, Principal, require_capability
from coatcheck.db import get_db
from coatcheck.dependencies import get_client_ip
from coatcheck.schemas import UserCreate, UserOut, UserUpdate
from coatcheck.services.audit_service import log_audit
from coatcheck.services.user_service import create_user, delete_user, get_user, list_users, update_user

router = APIRouter(prefix='/api/users', tags=['users'])

user_admin = require_capability(Capability.MANAGE_USERS)


@router.get('', response_model=list[UserOut])
def users_index(_: Principal = Depends(user_admin), db: Session = Depends(get_db)):
    return list_users(db)


@router.get('/{user_id}', response_model=UserOut)
def user_detail(user_id: str, _: Principal = Depends(user_admin), db: Session = Depends(get_db)):
    try:
        return get_user(db, user_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.post('', response_model=UserOut, status_code=201)
def user_create(
    payload: UserCreate,
    request: Request,
    principal: Principal = Depends(user_admin),
    db: Session = Depends(get_db),
):
    try:
        user = create_user(
            db,
            username=payload.username,
            password=payload.password,
            role=payload.role.value,
            email=payload.email,
            first_name=payload.first_name,
            last_name=payload.last_name,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='USER_CREATED',
        entity_type='user',
        entity_id=user.id,
        ip=get_client_ip(request),
        metadata={'username': user.username, 'role': user.role},
    )
    db.commit()
    return user


@router.patch('/{user_id}', response_model=UserOut)
def user_update(
    user_id: str,
    payload: UserUpdate,
    request: Request,
    principal: Principal = Depends(user_admin),
    db: Session = Depends(get_db),
):
    try:
        user = update_user(db, user_id, payload)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='USER_UPDATED',
        entity_type='user',
        entity_id=user.id,
        ip=get_client_ip(request),
        # never record the password itself
        metadata={'fields': sorted(payload.model_fields_set), 'role': user.role},
    )
    db.commit()
    return user


@router.delete('/{user_id}', status_code=204)
def user_delete(
    user_id: str,
    request: Request,
    principal: Principal = Depends(user_admin),
    db: Session = Depends(get_db),
):
    try:
        delete_user(db, user_id, actor_id=principal.id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='USER_DELETED',
        entity_type='user',
        entity_id=user_id,
        ip=get_client_ip(request),
    )
    db.commit()
    return Response(status_code=204)
