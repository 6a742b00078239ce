from __future__ import annotations

import logging
from collections import Counter, defaultdict
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from coatcheck.config import settings
from coatcheck.models import Customer, Estimate, EstimateStatus, Job, JobService, JobStatus
from coatcheck.services.catalog_service import resolve_service_quantities
from coatcheck.services.customer_service import (
    UNKNOWN_CUSTOMER_NAME,
    customer_names_by_id,
    find_or_create_customer,
    get_customer,
)
from coatcheck.services.inventory_service import list_job_inventory, sync_job_inventory
from coatcheck.services.pricing import (
    ZERO,
    check_status_transition,
    classify_job_age,
    is_completed_status,
    job_age_days,
    partition_jobs,
    resolve_price,
    service_total,
    to_money,
)
from coatcheck.services.tracking_service import next_tracking_id

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def list_jobs(db: Session, *, customer_id: str | None = None) -> list[Job]:
    query = select(Job)
    if customer_id:
        query = query.where(Job.customer_id == customer_id)
    return db.execute(query.order_by(Job.received_date.desc())).scalars().all()


def get_job(db: Session, job_id: str) -> Job:
    job = db.get(Job, job_id)
    if not job:
        raise LookupError('Job not found')
    return job


def list_job_services(db: Session, job_ids: list[str]) -> dict[str, list[JobService]]:
    grouped: dict[str, list[JobService]] = defaultdict(list)
    if not job_ids:
        return grouped
    rows = db.execute(
        select(JobService).where(JobService.job_id.in_(job_ids)).order_by(JobService.created_at.asc(), JobService.service_name.asc())
    ).scalars().all()
    for row in rows:
        grouped[row.job_id].append(row)
    return grouped


def sync_job_services(db: Session, job: Job, service_ids: list[str]) -> tuple[bool, Decimal]:
    """Diff the job's service rows against ``service_ids``.

    Rows for services still requested keep their original price snapshot;
    only added services snapshot the current catalog price. Returns whether
    the set changed and the resulting service total.
    """
    requested = resolve_service_quantities(db, service_ids)
    rows = db.execute(select(JobService).where(JobService.job_id == job.id)).scalars().all()
    changed = False
    kept: dict[str, JobService] = {}

    for row in rows:
        if row.service_id in requested and row.service_id not in kept:
            kept[row.service_id] = row
            continue
        db.delete(row)
        changed = True

    for service_id, (service, quantity) in requested.items():
        row = kept.get(service_id)
        if row is None:
            row = JobService(
                job_id=job.id,
                service_id=service.id,
                service_name=service.name,
                service_price=service.price,
                quantity=quantity,
            )
            db.add(row)
            kept[service_id] = row
            changed = True
        elif row.quantity != quantity:
            row.quantity = quantity
            changed = True

    db.flush()
    return changed, service_total(kept.values())


def _apply_status(job: Job, status: str) -> None:
    if settings.enforce_status_transitions:
        check_status_transition(job.status, status)
    job.status = status
    if is_completed_status(status):
        if job.completed_at is None:
            job.completed_at = _now()
    else:
        job.completed_at = None


def insert_job(
    db: Session,
    *,
    customer_id: str | None,
    phone_number: str | None,
    received_date: datetime | None,
    coating_type: str,
    items: str | None,
    detailed_notes: str | None,
    price: Decimal,
    status: str,
) -> Job:
    job = Job(
        tracking_id=next_tracking_id(db),
        customer_id=customer_id,
        phone_number=phone_number,
        received_date=received_date or _now(),
        coating_type=coating_type,
        items=items,
        detailed_notes=detailed_notes,
        price=to_money(price),
        status=status,
        completed_at=_now() if is_completed_status(status) else None,
    )
    db.add(job)
    db.flush()
    return job


def create_job(db: Session, payload) -> tuple[Job, bool]:
    """Create a job from a ``JobCreate`` payload.

    Returns the job and whether a new customer was created for it.
    """
    customer_created = False
    if payload.customer_name:
        customer, customer_created = find_or_create_customer(
            db,
            name=payload.customer_name,
            email=payload.customer_email,
            phone=payload.phone_number,
        )
    elif payload.customer_id:
        customer = get_customer(db, payload.customer_id)
    else:
        raise ValueError('Customer is required')

    job = insert_job(
        db,
        customer_id=customer.id,
        phone_number=payload.phone_number or customer.phone,
        received_date=payload.received_date,
        coating_type=payload.coating_type.value,
        items=payload.items,
        detailed_notes=payload.detailed_notes,
        price=ZERO,
        status=payload.status.value,
    )
    services_changed, total = sync_job_services(db, job, payload.service_ids)
    job.price = resolve_price(
        explicit_price=payload.price,
        services_changed=services_changed,
        current_price=ZERO,
        services_total=total,
    )
    if payload.inventory_items:
        sync_job_inventory(db, job, [(usage.inventory_item_id, usage.quantity) for usage in payload.inventory_items])
    db.flush()
    logger.info('Created job %s (%s)', job.tracking_id, job.status)
    return job, customer_created


def update_job(db: Session, job_id: str, payload) -> tuple[Job, str]:
    """Apply a ``JobUpdate`` payload; fields not sent are left alone.

    Returns the job and its status before the update.
    """
    job = get_job(db, job_id)
    previous_status = job.status
    sent = payload.model_fields_set

    if 'customer_id' in sent:
        job.customer_id = get_customer(db, payload.customer_id).id if payload.customer_id else None
    for field_name in ('phone_number', 'items', 'detailed_notes'):
        if field_name in sent:
            setattr(job, field_name, getattr(payload, field_name))
    if 'received_date' in sent and payload.received_date is not None:
        job.received_date = payload.received_date
    if 'coating_type' in sent and payload.coating_type is not None:
        job.coating_type = payload.coating_type.value
    if 'status' in sent and payload.status is not None:
        _apply_status(job, payload.status.value)

    services_changed = False
    total = ZERO
    if 'service_ids' in sent and payload.service_ids is not None:
        services_changed, total = sync_job_services(db, job, payload.service_ids)

    explicit_price = payload.price if 'price' in sent else None
    job.price = resolve_price(
        explicit_price=explicit_price,
        services_changed=services_changed,
        current_price=job.price,
        services_total=total,
    )

    if 'inventory_items' in sent and payload.inventory_items is not None:
        sync_job_inventory(db, job, [(usage.inventory_item_id, usage.quantity) for usage in payload.inventory_items])

    db.flush()
    return job, previous_status


def delete_job(db: Session, job_id: str) -> None:
    job = get_job(db, job_id)
    # give consumed stock back before the usage rows cascade away
    sync_job_inventory(db, job, [])
    db.query(JobService).filter(JobService.job_id == job.id).delete(synchronize_session=False)
    db.delete(job)
    db.flush()
    logger.info('Deleted job %s', job.tracking_id)


def job_views(db: Session, jobs: list[Job], *, now: datetime | None = None) -> list[dict]:
    now = now or _now()
    job_ids = [job.id for job in jobs]
    services = list_job_services(db, job_ids)
    inventory = list_job_inventory(db, job_ids)
    names = customer_names_by_id(db, {job.customer_id for job in jobs if job.customer_id})

    views = []
    for job in jobs:
        age = classify_job_age(job_age_days(job.received_date, now))
        customer_name = names.get(job.customer_id) if job.customer_id else None
        views.append(
            {
                'id': job.id,
                'tracking_id': job.tracking_id,
                'customer_id': job.customer_id,
                'customer_name': customer_name or UNKNOWN_CUSTOMER_NAME,
                'customer_deleted': customer_name is None,
                'phone_number': job.phone_number,
                'received_date': job.received_date,
                'coating_type': job.coating_type,
                'items': job.items,
                'detailed_notes': job.detailed_notes,
                'price': to_money(job.price),
                'status': job.status,
                'completed_at': job.completed_at,
                'created_at': job.created_at or job.received_date,
                'age_days': age.days,
                'age_label': age.label,
                'age_bucket': age.bucket,
                'is_completed': is_completed_status(job.status),
                'services': services.get(job.id, []),
                'inventory_items': inventory.get(job.id, []),
            }
        )
    return views


def job_view(db: Session, job: Job) -> dict:
    return job_views(db, [job])[0]


def job_board(db: Session, *, now: datetime | None = None) -> dict:
    active, completed = partition_jobs(list_jobs(db))
    return {
        'active': job_views(db, active, now=now),
        'completed': job_views(db, completed, now=now),
    }


def dashboard_summary(db: Session) -> dict:
    status_counts = Counter(
        {row.status: row.count for row in db.execute(select(Job.status, func.count().label('count')).group_by(Job.status))}
    )
    coating_counts = Counter(
        {
            row.coating_type: row.count
            for row in db.execute(select(Job.coating_type, func.count().label('count')).group_by(Job.coating_type))
        }
    )
    paid_revenue = db.execute(
        select(func.coalesce(func.sum(Job.price), 0)).where(Job.status == JobStatus.PAID.value)
    ).scalar_one()
    completed = sum(count for status, count in status_counts.items() if is_completed_status(status))
    total = sum(status_counts.values())
    open_estimates = db.execute(
        select(func.count())
        .select_from(Estimate)
        .where(Estimate.status.not_in([EstimateStatus.CONVERTED.value, EstimateStatus.REJECTED.value]))
    ).scalar_one()
    customers = db.execute(select(func.count()).select_from(Customer)).scalar_one()
    return {
        'total_jobs': total,
        'active_jobs': total - completed,
        'completed_jobs': completed,
        'jobs_by_status': dict(status_counts),
        'jobs_by_coating_type': dict(coating_counts),
        'paid_revenue': to_money(paid_revenue),
        'open_estimates': open_estimates,
        'customers': customers,
    }
