from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Protocol

from coatcheck.models import CoatingType, ImportedJobStatus, JobStatus

CENT = Decimal('0.01')
ZERO = Decimal('0.00')
SECONDS_PER_DAY = 24 * 60 * 60

COMPLETED_STATUSES = frozenset({JobStatus.FINISHED.value, JobStatus.PAID.value})
TERMINAL_STATUSES = frozenset({JobStatus.PAID.value, JobStatus.CANCELLED.value})
WORKFLOW_ORDER = (
    JobStatus.RECEIVED.value,
    JobStatus.PREPPED.value,
    JobStatus.COATED.value,
    JobStatus.FINISHED.value,
    JobStatus.PAID.value,
)
LEGACY_IMPORT_STATUSES = frozenset(
    {
        ImportedJobStatus.PENDING.value,
        ImportedJobStatus.IN_PROGRESS.value,
        ImportedJobStatus.COMPLETED.value,
    }
)


def _build_transitions() -> dict[str, frozenset[str]]:
    transitions: dict[str, frozenset[str]] = {}
    for index, current in enumerate(WORKFLOW_ORDER):
        allowed = set(WORKFLOW_ORDER[index + 1 :])
        if current not in TERMINAL_STATUSES:
            allowed.add(JobStatus.CANCELLED.value)
        transitions[current] = frozenset(allowed)
    transitions[JobStatus.CANCELLED.value] = frozenset()
    for legacy in LEGACY_IMPORT_STATUSES:
        transitions[legacy] = frozenset(WORKFLOW_ORDER) | {JobStatus.CANCELLED.value}
    return transitions


STATUS_TRANSITIONS: dict[str, frozenset[str]] = _build_transitions()


class PricedLine(Protocol):
    service_price: Decimal
    quantity: int


def to_money(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT)


def service_total(lines: Iterable[PricedLine]) -> Decimal:
    total = sum((to_money(line.service_price) * int(line.quantity or 1) for line in lines), ZERO)
    return total.quantize(CENT)


def resolve_price(
    *,
    explicit_price: Decimal | None,
    services_changed: bool,
    current_price: Decimal | None,
    services_total: Decimal,
) -> Decimal:
    """An explicit price always wins; otherwise only a service change recomputes."""
    if explicit_price is not None:
        return to_money(explicit_price)
    if services_changed:
        return to_money(services_total)
    return to_money(current_price)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def job_age_days(received_date: datetime, now: datetime | None = None) -> int:
    now = _as_utc(now or datetime.now(tz=timezone.utc))
    elapsed = abs((now - _as_utc(received_date)).total_seconds())
    return math.ceil(elapsed / SECONDS_PER_DAY)


@dataclass(frozen=True)
class JobAge:
    days: int
    label: str
    bucket: str


def classify_job_age(days: int) -> JobAge:
    if days <= 3:
        return JobAge(days=days, label='New', bucket='new')
    if days <= 7:
        return JobAge(days=days, label=f'{days}d', bucket='warning')
    if days <= 14:
        return JobAge(days=days, label=f'{days}d', bucket='elevated')
    return JobAge(days=days, label=f'{days}d!', bucket='urgent')


def is_completed_status(status: str) -> bool:
    return status in COMPLETED_STATUSES


class Dated(Protocol):
    status: str
    received_date: datetime


def partition_jobs(jobs: Iterable[Dated]) -> tuple[list, list]:
    """Split jobs into (active, completed).

    Active jobs come oldest-received first, completed jobs newest-received first.
    """
    active = []
    completed = []
    for job in jobs:
        (completed if is_completed_status(job.status) else active).append(job)
    active.sort(key=lambda job: _as_utc(job.received_date))
    completed.sort(key=lambda job: _as_utc(job.received_date), reverse=True)
    return active, completed


def check_status_transition(current: str, target: str) -> None:
    if current == target:
        return
    allowed = STATUS_TRANSITIONS.get(current)
    if allowed is None:
        # unknown stored value: let the job move back into the workflow
        return
    if target not in allowed:
        raise ValueError(f'Cannot change job status from {current} to {target}')


def infer_coating_type(service_names: Iterable[str]) -> str:
    lowered = [name.lower() for name in service_names]
    has_ceramic = any('ceramic' in name for name in lowered)
    has_powder = any('powder' in name for name in lowered)
    if has_ceramic and has_powder:
        return CoatingType.MISC.value
    if has_ceramic:
        return CoatingType.CERAMIC.value
    return CoatingType.POWDER.value


def format_service_lines(lines: Iterable) -> str:
    rendered = []
    for line in lines:
        label = line.service_name
        if int(line.quantity or 1) > 1:
            label = f'{label} x{line.quantity}'
        rendered.append(f'{label} - ${to_money(line.service_price) * int(line.quantity or 1):.2f}')
    return '\n'.join(rendered)
