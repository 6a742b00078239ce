from __future__ import annotations

from collections import Counter
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from coatcheck.models import EstimateService, JobService, Service


def list_services(db: Session, *, category: str | None = None) -> list[Service]:
    query = select(Service)
    if category:
        query = query.where(Service.category == category.strip().lower())
    return db.execute(query.order_by(Service.category.asc(), Service.name.asc())).scalars().all()


def get_service(db: Session, service_id: str) -> Service:
    service = db.get(Service, service_id)
    if not service:
        raise LookupError('Service not found')
    return service


def _ensure_unique_name(db: Session, name: str, *, exclude_id: str | None = None) -> None:
    query = select(Service.id).where(func.lower(Service.name) == name.strip().lower())
    if exclude_id:
        query = query.where(Service.id != exclude_id)
    if db.execute(query).first():
        raise ValueError('A service with this name already exists')


def create_service(db: Session, *, name: str, category: str, price: Decimal, service_id: str | None = None) -> Service:
    _ensure_unique_name(db, name)
    service = Service(name=name.strip(), category=category, price=price)
    if service_id:
        service.id = service_id
    db.add(service)
    db.flush()
    return service


def update_service(db: Session, service_id: str, changes: dict) -> Service:
    service = get_service(db, service_id)
    if changes.get('name'):
        _ensure_unique_name(db, changes['name'], exclude_id=service.id)
        service.name = changes['name'].strip()
    if changes.get('category'):
        service.category = changes['category']
    if changes.get('price') is not None:
        service.price = changes['price']
    db.flush()
    return service


def delete_service(db: Session, service_id: str) -> None:
    # job and estimate snapshots keep their name and price
    service = get_service(db, service_id)
    db.execute(update(JobService).where(JobService.service_id == service.id).values(service_id=None))
    db.execute(update(EstimateService).where(EstimateService.service_id == service.id).values(service_id=None))
    db.delete(service)
    db.flush()


def resolve_service_quantities(db: Session, service_ids: list[str]) -> dict[str, tuple[Service, int]]:
    """Map each requested id to its catalog entry and how many times it was requested."""
    counts = Counter(service_id for service_id in service_ids if service_id)
    if not counts:
        return {}
    services = db.execute(select(Service).where(Service.id.in_(counts.keys()))).scalars().all()
    by_id = {service.id: service for service in services}
    missing = sorted(set(counts) - set(by_id))
    if missing:
        raise ValueError(f'Unknown service ids: {", ".join(missing)}')
    return {service_id: (by_id[service_id], qty) for service_id, qty in counts.items()}
