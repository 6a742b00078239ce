from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session

from coatcheck.auth import Capability, Principal, require_capability
from coatcheck.db import get_db
from coatcheck.dependencies import get_client_ip
from coatcheck.models import JobStatus
from coatcheck.schemas import JobBoardOut, JobCreate, JobOut, JobUpdate
from coatcheck.services.audit_service import log_audit
from coatcheck.services.job_service import (
    create_job,
    delete_job,
    get_job,
    job_board,
    job_view,
    job_views,
    list_jobs,
    update_job,
)
from coatcheck.services.sms_service import notify_job_finished, notify_job_received

router = APIRouter(prefix='/api/jobs', tags=['jobs'])

read_access = require_capability(Capability.ADMIN_AREA)
write_access = require_capability(Capability.MANAGE_RECORDS)


@router.get('', response_model=list[JobOut])
def jobs_index(
    customer_id: str | None = Query(default=None, alias='customerId'),
    _: Principal = Depends(read_access),
    db: Session = Depends(get_db),
):
    return job_views(db, list_jobs(db, customer_id=customer_id))


@router.get('/board', response_model=JobBoardOut)
def jobs_board(_: Principal = Depends(read_access), db: Session = Depends(get_db)):
    return job_board(db)


@router.get('/{job_id}', response_model=JobOut)
def job_detail(job_id: str, _: Principal = Depends(read_access), db: Session = Depends(get_db)):
    try:
        return job_view(db, get_job(db, job_id))
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.post('', response_model=JobOut, status_code=201)
def job_create(
    payload: JobCreate,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    try:
        job, customer_created = create_job(db, payload)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    log_audit(
        db,
        actor_user_id=principal.id,
        action='JOB_CREATED',
        entity_type='job',
        entity_id=job.id,
        ip=get_client_ip(request),
        metadata={'tracking_id': job.tracking_id, 'customer_created': customer_created},
    )
    db.commit()

    view = job_view(db, job)
    notify_job_received(db, job=job, customer_name=view['customer_name'], actor_user_id=principal.id)
    db.commit()
    return view


@router.patch('/{job_id}', response_model=JobOut)
def job_update(
    job_id: str,
    payload: JobUpdate,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    try:
        job, previous_status = update_job(db, job_id, payload)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    log_audit(
        db,
        actor_user_id=principal.id,
        action='JOB_UPDATED',
        entity_type='job',
        entity_id=job.id,
        ip=get_client_ip(request),
        metadata={'fields': sorted(payload.model_fields_set), 'status_from': previous_status, 'status_to': job.status},
    )
    db.commit()

    view = job_view(db, job)
    if previous_status != job.status and job.status == JobStatus.FINISHED.value:
        notify_job_finished(db, job=job, customer_name=view['customer_name'], actor_user_id=principal.id)
        db.commit()
    return view


@router.delete('/{job_id}', status_code=204)
def job_delete(
    job_id: str,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    try:
        delete_job(db, job_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='JOB_DELETED',
        entity_type='job',
        entity_id=job_id,
        ip=get_client_ip(request),
    )
    db.commit()
    return Response(status_code=204)
