from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from coatcheck.models import Estimate, EstimateService, EstimateStatus, JobService, JobStatus
from coatcheck.services.catalog_service import get_service, resolve_service_quantities
from coatcheck.services.customer_service import find_or_create_customer
from coatcheck.services.job_service import insert_job
from coatcheck.services.pricing import format_service_lines, infer_coating_type, service_total, to_money

logger = logging.getLogger(__name__)


def list_estimates(db: Session) -> list[Estimate]:
    return db.execute(select(Estimate).order_by(Estimate.date.desc(), Estimate.created_at.desc())).scalars().all()


def get_estimate(db: Session, estimate_id: str) -> Estimate:
    estimate = db.get(Estimate, estimate_id)
    if not estimate:
        raise LookupError('Estimate not found')
    return estimate


def list_estimate_services(db: Session, estimate_ids: list[str]) -> dict[str, list[EstimateService]]:
    grouped: dict[str, list[EstimateService]] = defaultdict(list)
    if not estimate_ids:
        return grouped
    rows = db.execute(
        select(EstimateService)
        .where(EstimateService.estimate_id.in_(estimate_ids))
        .order_by(EstimateService.created_at.asc(), EstimateService.service_name.asc())
    ).scalars().all()
    for row in rows:
        grouped[row.estimate_id].append(row)
    return grouped


def _ensure_editable(estimate: Estimate) -> None:
    if estimate.status == EstimateStatus.CONVERTED.value:
        raise ValueError('Estimate has already been converted to a job')


def _recalculate(db: Session, estimate: Estimate) -> None:
    lines = list_estimate_services(db, [estimate.id]).get(estimate.id, [])
    estimate.total = service_total(lines)
    estimate.service_type = infer_coating_type(line.service_name for line in lines)


def _replace_services(db: Session, estimate: Estimate, service_ids: list[str]) -> None:
    requested = resolve_service_quantities(db, service_ids)
    db.query(EstimateService).filter(EstimateService.estimate_id == estimate.id).delete(synchronize_session=False)
    for service, quantity in requested.values():
        db.add(
            EstimateService(
                estimate_id=estimate.id,
                service_id=service.id,
                service_name=service.name,
                service_price=service.price,
                quantity=quantity,
            )
        )
    db.flush()


def create_estimate(db: Session, payload) -> Estimate:
    estimate = Estimate(
        customer_name=payload.customer_name,
        customer_phone=payload.customer_phone,
        date=payload.date or datetime.now(tz=timezone.utc),
        desired_finish_date=payload.desired_finish_date,
        notes=payload.notes,
        status=payload.status.value,
    )
    db.add(estimate)
    db.flush()
    _replace_services(db, estimate, payload.service_ids)
    _recalculate(db, estimate)
    if payload.total is not None:
        estimate.total = to_money(payload.total)
    db.flush()
    return estimate


def update_estimate(db: Session, estimate_id: str, payload) -> Estimate:
    estimate = get_estimate(db, estimate_id)
    _ensure_editable(estimate)
    sent = payload.model_fields_set

    if 'customer_name' in sent and payload.customer_name:
        estimate.customer_name = payload.customer_name
    for field_name in ('customer_phone', 'desired_finish_date', 'notes'):
        if field_name in sent:
            setattr(estimate, field_name, getattr(payload, field_name))
    if 'date' in sent and payload.date is not None:
        estimate.date = payload.date
    if 'status' in sent and payload.status is not None:
        estimate.status = payload.status.value

    if 'service_ids' in sent and payload.service_ids is not None:
        _replace_services(db, estimate, payload.service_ids)
        _recalculate(db, estimate)
    if 'total' in sent and payload.total is not None:
        estimate.total = to_money(payload.total)
    db.flush()
    return estimate


def delete_estimate(db: Session, estimate_id: str) -> None:
    estimate = get_estimate(db, estimate_id)
    db.query(EstimateService).filter(EstimateService.estimate_id == estimate.id).delete(synchronize_session=False)
    db.delete(estimate)
    db.flush()


def add_estimate_service(db: Session, estimate_id: str, *, service_id: str, quantity: int) -> EstimateService:
    estimate = get_estimate(db, estimate_id)
    _ensure_editable(estimate)
    service = get_service(db, service_id)
    row = db.execute(
        select(EstimateService).where(
            EstimateService.estimate_id == estimate.id,
            EstimateService.service_id == service.id,
        )
    ).scalars().first()
    if row:
        row.quantity += quantity
    else:
        row = EstimateService(
            estimate_id=estimate.id,
            service_id=service.id,
            service_name=service.name,
            service_price=service.price,
            quantity=quantity,
        )
        db.add(row)
    db.flush()
    _recalculate(db, estimate)
    db.flush()
    return row


def remove_estimate_service(db: Session, estimate_id: str, row_id: str) -> None:
    estimate = get_estimate(db, estimate_id)
    _ensure_editable(estimate)
    row = db.get(EstimateService, row_id)
    if not row or row.estimate_id != estimate.id:
        raise LookupError('Estimate service not found')
    db.delete(row)
    db.flush()
    _recalculate(db, estimate)
    db.flush()


def estimate_views(db: Session, estimates: list[Estimate]) -> list[dict]:
    services = list_estimate_services(db, [estimate.id for estimate in estimates])
    return [
        {
            'id': estimate.id,
            'customer_name': estimate.customer_name,
            'customer_phone': estimate.customer_phone,
            'service_type': estimate.service_type,
            'date': estimate.date,
            'desired_finish_date': estimate.desired_finish_date,
            'notes': estimate.notes,
            'total': to_money(estimate.total),
            'status': estimate.status,
            'converted_job_id': estimate.converted_job_id,
            'created_at': estimate.created_at or estimate.date,
            'services': services.get(estimate.id, []),
        }
        for estimate in estimates
    ]


def estimate_view(db: Session, estimate: Estimate) -> dict:
    return estimate_views(db, [estimate])[0]


def convert_to_job(db: Session, estimate_id: str):
    """Turn an estimate into a received job.

    The estimate's service rows are copied onto the job as-is, so the job is
    priced the way the customer was quoted. Converting twice is refused.
    Returns the job and whether a new customer was created.
    """
    estimate = db.execute(select(Estimate).where(Estimate.id == estimate_id).with_for_update()).scalars().first()
    if not estimate:
        raise LookupError('Estimate not found')
    if estimate.status == EstimateStatus.CONVERTED.value or estimate.converted_job_id:
        raise ValueError('Estimate has already been converted to a job')

    customer, customer_created = find_or_create_customer(
        db,
        name=estimate.customer_name,
        phone=estimate.customer_phone,
    )
    lines = list_estimate_services(db, [estimate.id]).get(estimate.id, [])
    job = insert_job(
        db,
        customer_id=customer.id,
        phone_number=estimate.customer_phone or customer.phone,
        received_date=None,
        coating_type=estimate.service_type,
        items=format_service_lines(lines) or None,
        detailed_notes=estimate.notes,
        price=estimate.total,
        status=JobStatus.RECEIVED.value,
    )
    for line in lines:
        db.add(
            JobService(
                job_id=job.id,
                service_id=line.service_id,
                service_name=line.service_name,
                service_price=line.service_price,
                quantity=line.quantity,
            )
        )
    estimate.status = EstimateStatus.CONVERTED.value
    estimate.converted_job_id = job.id
    db.flush()
    logger.info('Converted estimate %s into job %s', estimate.id, job.tracking_id)
    return job, customer_created
