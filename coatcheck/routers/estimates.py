from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from coatcheck.auth import Capability, Principal, require_capability
from coatcheck.db import get_db
from coatcheck.dependencies import get_client_ip
from coatcheck.schemas import EstimateCreate, EstimateOut, EstimateServiceAdd, EstimateUpdate, JobOut, ServiceLineOut
from coatcheck.services.audit_service import log_audit
from coatcheck.services.estimate_service import (
    add_estimate_service,
    convert_to_job,
    create_estimate,
    delete_estimate,
    estimate_view,
    estimate_views,
    get_estimate,
    list_estimate_services,
    list_estimates,
    remove_estimate_service,
    update_estimate,
)
from coatcheck.services.job_service import job_view
from coatcheck.services.sms_service import notify_job_received

router = APIRouter(prefix='/api/estimates', tags=['estimates'])

read_access = require_capability(Capability.VIEW_ESTIMATES)
write_access = require_capability(Capability.MANAGE_ESTIMATES)
convert_access = require_capability(Capability.MANAGE_RECORDS)


@router.get('', response_model=list[EstimateOut])
def estimates_index(_: Principal = Depends(read_access), db: Session = Depends(get_db)):
    return estimate_views(db, list_estimates(db))


@router.get('/{estimate_id}', response_model=EstimateOut)
def estimate_detail(estimate_id: str, _: Principal = Depends(read_access), db: Session = Depends(get_db)):
    try:
        return estimate_view(db, get_estimate(db, estimate_id))
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.post('', response_model=EstimateOut, status_code=201)
def estimate_create(
    payload: EstimateCreate,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    try:
        estimate = create_estimate(db, payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='ESTIMATE_CREATED',
        entity_type='estimate',
        entity_id=estimate.id,
        ip=get_client_ip(request),
    )
    db.commit()
    return estimate_view(db, estimate)


@router.patch('/{estimate_id}', response_model=EstimateOut)
def estimate_update(
    estimate_id: str,
    payload: EstimateUpdate,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    try:
        estimate = update_estimate(db, estimate_id, payload)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='ESTIMATE_UPDATED',
        entity_type='estimate',
        entity_id=estimate.id,
        ip=get_client_ip(request),
        metadata={'fields': sorted(payload.model_fields_set)},
    )
    db.commit()
    return estimate_view(db, estimate)


@router.delete('/{estimate_id}', status_code=204)
def estimate_delete(
    estimate_id: str,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    try:
        delete_estimate(db, estimate_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='ESTIMATE_DELETED',
        entity_type='estimate',
        entity_id=estimate_id,
        ip=get_client_ip(request),
    )
    db.commit()
    return Response(status_code=204)


@router.get('/{estimate_id}/services', response_model=list[ServiceLineOut])
def estimate_services_index(estimate_id: str, _: Principal = Depends(read_access), db: Session = Depends(get_db)):
    try:
        estimate = get_estimate(db, estimate_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return list_estimate_services(db, [estimate.id]).get(estimate.id, [])


@router.post('/{estimate_id}/services', response_model=EstimateOut, status_code=201)
def estimate_service_add(
    estimate_id: str,
    payload: EstimateServiceAdd,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    try:
        row = add_estimate_service(db, estimate_id, service_id=payload.service_id, quantity=payload.quantity)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='ESTIMATE_SERVICE_ADDED',
        entity_type='estimate',
        entity_id=estimate_id,
        ip=get_client_ip(request),
        metadata={'service_id': row.service_id, 'quantity': payload.quantity},
    )
    db.commit()
    return estimate_view(db, get_estimate(db, estimate_id))


@router.delete('/{estimate_id}/services/{row_id}', response_model=EstimateOut)
def estimate_service_remove(
    estimate_id: str,
    row_id: str,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    try:
        remove_estimate_service(db, estimate_id, row_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='ESTIMATE_SERVICE_REMOVED',
        entity_type='estimate',
        entity_id=estimate_id,
        ip=get_client_ip(request),
        metadata={'row_id': row_id},
    )
    db.commit()
    return estimate_view(db, get_estimate(db, estimate_id))


@router.post('/{estimate_id}/convert-to-job', response_model=JobOut, status_code=201)
def estimate_convert(
    estimate_id: str,
    request: Request,
    principal: Principal = Depends(convert_access),
    db: Session = Depends(get_db),
):
    try:
        job, customer_created = convert_to_job(db, estimate_id)
    except LookupError as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='ESTIMATE_CONVERTED',
        entity_type='estimate',
        entity_id=estimate_id,
        ip=get_client_ip(request),
        metadata={'job_id': job.id, 'tracking_id': job.tracking_id, 'customer_created': customer_created},
    )
    db.commit()

    view = job_view(db, job)
    notify_job_received(db, job=job, customer_name=view['customer_name'], actor_user_id=principal.id)
    db.commit()
    return view
