from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from coatcheck.auth import Capability, Principal, require_capability
from coatcheck.db import get_db
from coatcheck.dependencies import get_client_ip
from coatcheck.models import ServiceCategory
from coatcheck.schemas import ServiceCreate, ServiceOut, ServiceUpdate
from coatcheck.services.audit_service import log_audit
from coatcheck.services.catalog_service import (
    create_service,
    delete_service,
    get_service,
    list_services,
    update_service,
)

router = APIRouter(prefix='/api/services', tags=['services'])

read_access = require_capability(Capability.ADMIN_AREA)
write_access = require_capability(Capability.MANAGE_RECORDS)


@router.get('', response_model=list[ServiceOut])
def services_index(
    category: ServiceCategory | None = None,
    _: Principal = Depends(read_access),
    db: Session = Depends(get_db),
):
    return list_services(db, category=category.value if category else None)


@router.get('/{service_id}', response_model=ServiceOut)
def service_detail(service_id: str, _: Principal = Depends(read_access), db: Session = Depends(get_db)):
    try:
        return get_service(db, service_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.post('', response_model=ServiceOut, status_code=201)
def service_create(
    payload: ServiceCreate,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    try:
        service = create_service(db, name=payload.name, category=payload.category.value, price=payload.price)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='SERVICE_CREATED',
        entity_type='service',
        entity_id=service.id,
        ip=get_client_ip(request),
        metadata={'name': service.name, 'price': str(service.price)},
    )
    db.commit()
    return service


@router.patch('/{service_id}', response_model=ServiceOut)
def service_update(
    service_id: str,
    payload: ServiceUpdate,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(include=payload.model_fields_set)
    if payload.category is not None:
        changes['category'] = payload.category.value
    try:
        service = update_service(db, service_id, changes)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='SERVICE_UPDATED',
        entity_type='service',
        entity_id=service.id,
        ip=get_client_ip(request),
        metadata={'fields': sorted(changes)},
    )
    db.commit()
    return service


@router.delete('/{service_id}', status_code=204)
def service_delete(
    service_id: str,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    try:
        delete_service(db, service_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='SERVICE_DELETED',
        entity_type='service',
        entity_id=service_id,
        ip=get_client_ip(request),
    )
    db.commit()
    return Response(status_code=204)
