from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from coatcheck.auth import Capability, Principal, require_capability
from coatcheck.db import get_db
from coatcheck.dependencies import get_client_ip
from coatcheck.schemas import CustomerCreate, CustomerOut, CustomerUpdate
from coatcheck.services.audit_service import log_audit
from coatcheck.services.customer_service import (
    create_customer,
    delete_customer,
    get_customer,
    list_customers,
    update_customer,
)

router = APIRouter(prefix='/api/customers', tags=['customers'])

read_access = require_capability(Capability.ADMIN_AREA)
write_access = require_capability(Capability.MANAGE_RECORDS)


@router.get('', response_model=list[CustomerOut])
def customers_index(_: Principal = Depends(read_access), db: Session = Depends(get_db)):
    return list_customers(db)


@router.get('/{customer_id}', response_model=CustomerOut)
def customer_detail(customer_id: str, _: Principal = Depends(read_access), db: Session = Depends(get_db)):
    try:
        return get_customer(db, customer_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.post('', response_model=CustomerOut, status_code=201)
def customer_create(
    payload: CustomerCreate,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    customer = create_customer(
        db,
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
        address=payload.address,
    )
    log_audit(
        db,
        actor_user_id=principal.id,
        action='CUSTOMER_CREATED',
        entity_type='customer',
        entity_id=customer.id,
        ip=get_client_ip(request),
    )
    db.commit()
    return customer


@router.patch('/{customer_id}', response_model=CustomerOut)
def customer_update(
    customer_id: str,
    payload: CustomerUpdate,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(include=payload.model_fields_set)
    try:
        customer = update_customer(db, customer_id, changes)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='CUSTOMER_UPDATED',
        entity_type='customer',
        entity_id=customer.id,
        ip=get_client_ip(request),
        metadata={'fields': sorted(changes)},
    )
    db.commit()
    return customer


@router.delete('/{customer_id}', status_code=204)
def customer_delete(
    customer_id: str,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    try:
        delete_customer(db, customer_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='CUSTOMER_DELETED',
        entity_type='customer',
        entity_id=customer_id,
        ip=get_client_ip(request),
    )
    db.commit()
    return Response(status_code=204)
