from __future__ import annotations

import csv
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy.orm import Session

from coatcheck.db import unit_of_work
from coatcheck.models import CoatingType, ImportedJobStatus, ServiceCategory
from coatcheck.services.catalog_service import create_service
from coatcheck.services.customer_service import find_or_create_customer
from coatcheck.services.job_service import insert_job
from coatcheck.services.pricing import ZERO, to_money

logger = logging.getLogger(__name__)

BOTH_COATINGS = 'both'
CERAMIC_KEYWORDS = ('CERAMIC', 'MCX', 'BHK', 'TXBK', 'MCSL', 'POLISH', 'CHROME')
POWDER_KEYWORDS = ('POWDER', 'SANDBLAST')
HEADER_ECHO_NAMES = frozenset({'Customer Name', 'Customer'})
FALLBACK_PHONE = '555-0000'
DATE_FORMATS = ('%m/%d/%Y', '%B %d, %Y', '%b %d, %Y')

COMPLETED_CSV_STATUSES = frozenset({'paid', 'coated', 'ready for pickup'})
IN_PROGRESS_CSV_STATUSES = frozenset({'received', 'prepped', 'material ordered/job on hold'})
CANCELLED_CSV_STATUSES = frozenset({'canceled', 'cancelled'})


@dataclass
class ImportSummary:
    imported: int = 0
    skipped: int = 0
    tracking_ids: list[str] = field(default_factory=list)


def map_coating_type(text: str | None) -> str:
    value = (text or '').upper().strip()
    if not value:
        return CoatingType.CERAMIC.value
    if ',' in value:
        return BOTH_COATINGS
    if any(keyword in value for keyword in CERAMIC_KEYWORDS):
        return CoatingType.CERAMIC.value
    if any(keyword in value for keyword in POWDER_KEYWORDS):
        return CoatingType.POWDER.value
    return CoatingType.CERAMIC.value


def map_status(text: str | None) -> str:
    value = (text or '').lower().strip()
    if value in COMPLETED_CSV_STATUSES:
        return ImportedJobStatus.COMPLETED.value
    if value in IN_PROGRESS_CSV_STATUSES:
        return ImportedJobStatus.IN_PROGRESS.value
    if value in CANCELLED_CSV_STATUSES:
        return ImportedJobStatus.CANCELLED.value
    return ImportedJobStatus.PENDING.value


def parse_price(text: str | None) -> Decimal:
    cleaned = re.sub(r'[$,\s]', '', text or '')
    if not cleaned:
        return ZERO
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return ZERO
    if not value.is_finite():
        return ZERO
    return to_money(value)


def parse_date(text: str | None, *, now: datetime | None = None) -> datetime:
    now = now or datetime.now(tz=timezone.utc)
    value = (text or '').strip()
    if not value:
        return now
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        parsed = None
    if parsed is None:
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return now
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def clean_phone(text: str | None) -> str:
    digits = re.sub(r'\D', '', text or '')
    if len(digits) == 10:
        return f'{digits[:3]}-{digits[3:6]}-{digits[6:]}'
    return digits


def should_skip_row(row: dict) -> bool:
    customer = (row.get('Customer') or '').strip()
    if not customer or customer in HEADER_ECHO_NAMES:
        return True
    has_items = bool((row.get('Items') or '').strip())
    has_price = bool((row.get('Price') or '').strip())
    return not has_items and not has_price


def import_job_row(db: Session, row: dict) -> str:
    customer_name = row['Customer'].strip()
    phone = clean_phone(row.get('Contact'))
    customer, created = find_or_create_customer(db, name=customer_name, phone=phone or None)
    if created:
        logger.info('Created customer %s', customer_name)
    job = insert_job(
        db,
        customer_id=customer.id,
        phone_number=phone or customer.phone or FALLBACK_PHONE,
        received_date=parse_date(row.get('Received')),
        coating_type=map_coating_type(row.get('Coating Type')),
        items=(row.get('Items') or '').strip() or None,
        detailed_notes=None,
        price=parse_price(row.get('Price')),
        status=map_status(row.get('Status')),
    )
    return job.tracking_id


def import_job_rows(db: Session, rows: Iterable[dict]) -> ImportSummary:
    """Import spreadsheet job rows, committing each row on its own."""
    summary = ImportSummary()
    for row in rows:
        if should_skip_row(row):
            summary.skipped += 1
            continue
        try:
            with unit_of_work(db):
                tracking_id = import_job_row(db, row)
        except Exception:
            logger.exception('Failed to import job row for %r', row.get('Customer'))
            summary.skipped += 1
            continue
        summary.imported += 1
        summary.tracking_ids.append(tracking_id)
        logger.info('Imported %s for %s', tracking_id, row['Customer'].strip())
    return summary


def import_service_rows(db: Session, rows: Iterable[dict]) -> ImportSummary:
    summary = ImportSummary()
    for row in rows:
        name = (row.get('Item Description') or '').strip()
        price_text = (row.get('Price ($)') or '').strip()
        try:
            price = Decimal(price_text)
        except InvalidOperation:
            price = None
        if not name or price is None or not price.is_finite() or price < 0:
            logger.info('Skipping invalid price-list row: %r', row)
            summary.skipped += 1
            continue
        try:
            with unit_of_work(db):
                create_service(db, name=name, category=ServiceCategory.POWDER.value, price=to_money(price))
        except ValueError as exc:
            logger.info('Skipping %s: %s', name, exc)
            summary.skipped += 1
            continue
        summary.imported += 1
    return summary


def read_csv_rows(path: str) -> list[dict]:
    # utf-8-sig drops a leading byte order mark
    with open(path, newline='', encoding='utf-8-sig') as handle:
        reader = csv.DictReader(handle)
        rows = []
        for row in reader:
            cleaned = {(key or '').strip(): (value or '').strip() for key, value in row.items() if key}
            if any(cleaned.values()):
                rows.append(cleaned)
        return rows
