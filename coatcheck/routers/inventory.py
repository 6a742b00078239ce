from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from coatcheck.auth import Capability, Principal, require_capability
from coatcheck.db import get_db
from coatcheck.dependencies import get_client_ip
from coatcheck.schemas import InventoryCreate, InventoryOut, InventoryUpdate
from coatcheck.services.audit_service import log_audit
from coatcheck.services.inventory_service import (
    create_inventory_item,
    delete_inventory_item,
    get_inventory_item,
    list_inventory,
    update_inventory_item,
)

router = APIRouter(prefix='/api/inventory', tags=['inventory'])

read_access = require_capability(Capability.ADMIN_AREA)
write_access = require_capability(Capability.MANAGE_RECORDS)


@router.get('', response_model=list[InventoryOut])
def inventory_index(_: Principal = Depends(read_access), db: Session = Depends(get_db)):
    return list_inventory(db)


@router.get('/{item_id}', response_model=InventoryOut)
def inventory_detail(item_id: str, _: Principal = Depends(read_access), db: Session = Depends(get_db)):
    try:
        return get_inventory_item(db, item_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.post('', response_model=InventoryOut, status_code=201)
def inventory_create(
    payload: InventoryCreate,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    values = payload.model_dump()
    values['category'] = payload.category.value
    item = create_inventory_item(db, values)
    log_audit(
        db,
        actor_user_id=principal.id,
        action='INVENTORY_CREATED',
        entity_type='inventory_item',
        entity_id=item.id,
        ip=get_client_ip(request),
        metadata={'name': item.name, 'quantity': str(item.quantity)},
    )
    db.commit()
    return item


@router.patch('/{item_id}', response_model=InventoryOut)
def inventory_update(
    item_id: str,
    payload: InventoryUpdate,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(include=payload.model_fields_set)
    if payload.category is not None:
        changes['category'] = payload.category.value
    try:
        item = update_inventory_item(db, item_id, changes)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='INVENTORY_UPDATED',
        entity_type='inventory_item',
        entity_id=item.id,
        ip=get_client_ip(request),
        metadata={'fields': sorted(changes)},
    )
    db.commit()
    return item


@router.delete('/{item_id}', status_code=204)
def inventory_delete(
    item_id: str,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    try:
        delete_inventory_item(db, item_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='INVENTORY_DELETED',
        entity_type='inventory_item',
        entity_id=item_id,
        ip=get_client_ip(request),
    )
    db.commit()
    return Response(status_code=204)
