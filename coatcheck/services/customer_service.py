from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from coatcheck.models import Customer, Job, Note

UNKNOWN_CUSTOMER_NAME = 'Unknown/Deleted Customer'


def list_customers(db: Session) -> list[Customer]:
    return db.execute(select(Customer).order_by(Customer.name.asc())).scalars().all()


def get_customer(db: Session, customer_id: str) -> Customer:
    customer = db.get(Customer, customer_id)
    if not customer:
        raise LookupError('Customer not found')
    return customer


def find_customer_by_name(db: Session, name: str) -> Customer | None:
    normalized = name.strip().lower()
    if not normalized:
        return None
    return db.execute(
        select(Customer).where(func.lower(Customer.name) == normalized).order_by(Customer.created_at.asc())
    ).scalars().first()


def find_or_create_customer(
    db: Session,
    *,
    name: str,
    email: str | None = None,
    phone: str | None = None,
) -> tuple[Customer, bool]:
    clean_name = name.strip()
    if not clean_name:
        raise ValueError('Customer name is required')
    existing = find_customer_by_name(db, clean_name)
    if existing:
        return existing, False
    customer = Customer(name=clean_name, email=email, phone=phone)
    db.add(customer)
    db.flush()
    return customer, True


def create_customer(db: Session, *, name: str, email: str | None, phone: str | None, address: str | None) -> Customer:
    customer = Customer(name=name.strip(), email=email, phone=phone, address=address)
    db.add(customer)
    db.flush()
    return customer


def update_customer(db: Session, customer_id: str, changes: dict) -> Customer:
    customer = get_customer(db, customer_id)
    if 'name' in changes and not changes['name']:
        raise ValueError('Customer name is required')
    for field_name in ('name', 'email', 'phone', 'address'):
        if field_name in changes:
            setattr(customer, field_name, changes[field_name])
    db.flush()
    return customer


def delete_customer(db: Session, customer_id: str) -> None:
    """Delete a customer, keeping their jobs and notes with no customer."""
    customer = get_customer(db, customer_id)
    db.execute(update(Job).where(Job.customer_id == customer.id).values(customer_id=None))
    db.execute(update(Note).where(Note.customer_id == customer.id).values(customer_id=None))
    db.delete(customer)
    db.flush()


def customer_names_by_id(db: Session, customer_ids: set[str]) -> dict[str, str]:
    if not customer_ids:
        return {}
    rows = db.execute(select(Customer.id, Customer.name).where(Customer.id.in_(customer_ids))).all()
    return {row.id: row.name for row in rows}
