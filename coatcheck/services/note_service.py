from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from coatcheck.models import Customer, Job, Note, User


def list_notes(db: Session, *, job_id: str | None = None, customer_id: str | None = None) -> list[Note]:
    query = select(Note)
    if job_id:
        query = query.where(Note.job_id == job_id)
    if customer_id:
        query = query.where(Note.customer_id == customer_id)
    return db.execute(query.order_by(Note.created_at.desc())).scalars().all()


def author_name(db: Session, principal) -> str:
    user = db.get(User, principal.id)
    if user:
        name = f"{user.first_name or ''} {user.last_name or ''}".strip()
        if name:
            return name
        if user.username or user.email:
            return user.username or user.email
    return principal.display_name


def create_note(
    db: Session,
    *,
    content: str,
    author: str,
    job_id: str | None = None,
    customer_id: str | None = None,
) -> Note:
    if job_id:
        job = db.get(Job, job_id)
        if not job:
            raise LookupError('Job not found')
        # a job note is also filed under the job's customer
        customer_id = customer_id or job.customer_id
    if customer_id and not db.get(Customer, customer_id):
        raise LookupError('Customer not found')
    note = Note(job_id=job_id, customer_id=customer_id, content=content, author=author)
    db.add(note)
    db.flush()
    return note


def delete_note(db: Session, note_id: str) -> None:
    note = db.get(Note, note_id)
    if not note:
        raise LookupError('Note not found')
    db.delete(note)
    db.flush()
