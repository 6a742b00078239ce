from __future__ import annotations

import re

from sqlalchemy import select
from sqlalchemy.orm import Session

from coatcheck.models import Job, Sequence

JOB_SEQUENCE = 'job_tracking'
TRACKING_RE = re.compile(r'JOB-(\d+)')


def format_tracking_id(number: int) -> str:
    return f'JOB-{number:04d}'


def max_tracking_number(tracking_ids) -> int:
    highest = 0
    for tracking_id in tracking_ids:
        match = TRACKING_RE.search(tracking_id or '')
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


def next_tracking_id(db: Session) -> str:
    """Reserve the next JOB-NNNN number.

    The counter row is created on first use from the highest existing
    tracking id, then locked and incremented for every reservation.
    """
    counter = db.execute(
        select(Sequence).where(Sequence.name == JOB_SEQUENCE).with_for_update()
    ).scalar_one_or_none()
    if counter is None:
        existing = db.execute(select(Job.tracking_id)).scalars().all()
        counter = Sequence(name=JOB_SEQUENCE, value=max_tracking_number(existing))
        db.add(counter)
        db.flush()
    counter.value += 1
    db.flush()
    return format_tracking_id(counter.value)
