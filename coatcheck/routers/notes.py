from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy.orm import Session

from coatcheck.auth import Capability, Principal, require_capability
from coatcheck.db import get_db
from coatcheck.dependencies import get_client_ip
from coatcheck.schemas import NoteCreate, NoteOut
from coatcheck.services.audit_service import log_audit
from coatcheck.services.note_service import author_name, create_note, delete_note, list_notes

router = APIRouter(prefix='/api/notes', tags=['notes'])

read_access = require_capability(Capability.ADMIN_AREA)
write_access = require_capability(Capability.MANAGE_RECORDS)


@router.get('', response_model=list[NoteOut])
def notes_index(
    job_id: str | None = Query(default=None, alias='jobId'),
    customer_id: str | None = Query(default=None, alias='customerId'),
    _: Principal = Depends(read_access),
    db: Session = Depends(get_db),
):
    return list_notes(db, job_id=job_id, customer_id=customer_id)


@router.post('', response_model=NoteOut, status_code=201)
def note_create(
    payload: NoteCreate,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    try:
        note = create_note(
            db,
            content=payload.content,
            author=author_name(db, principal),
            job_id=payload.job_id,
            customer_id=payload.customer_id,
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='NOTE_CREATED',
        entity_type='note',
        entity_id=note.id,
        ip=get_client_ip(request),
        metadata={'job_id': note.job_id, 'customer_id': note.customer_id},
    )
    db.commit()
    return note


@router.delete('/{note_id}', status_code=204)
def note_delete(
    note_id: str,
    request: Request,
    principal: Principal = Depends(write_access),
    db: Session = Depends(get_db),
):
    try:
        delete_note(db, note_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    log_audit(
        db,
        actor_user_id=principal.id,
        action='NOTE_DELETED',
        entity_type='note',
        entity_id=note_id,
        ip=get_client_ip(request),
    )
    db.commit()
    return Response(status_code=204)
