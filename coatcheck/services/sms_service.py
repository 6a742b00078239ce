from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from sqlalchemy.orm import Session

from coatcheck.config import settings
from coatcheck.services.audit_service import log_audit

logger = logging.getLogger(__name__)

JOB_RECEIVED_TEMPLATE = (
    "Hi {first_name}, your items have been received at {shop_name}. "
    "We'll notify you when they're ready for pickup."
)
JOB_FINISHED_TEMPLATE = (
    'Hi {first_name}, your items are complete and ready for pickup at {shop_name}. '
    'Thank you for your business!'
)


@dataclass
class SmsResult:
    success: bool
    phone: str | None = None
    text_id: str | None = None
    error: str | None = None
    quota_remaining: int | None = None


def format_phone_e164(phone: str | None) -> str | None:
    digits = re.sub(r'\D', '', phone or '')
    if len(digits) == 10:
        return f'+1{digits}'
    if len(digits) == 11 and digits.startswith('1'):
        return f'+{digits}'
    if len(digits) > 10:
        return f'+{digits}'
    return None


def _first_name(customer_name: str | None) -> str:
    parts = (customer_name or '').split()
    return parts[0] if parts else 'there'


def send_sms(phone: str | None, message: str) -> SmsResult:
    """Send one text through Textbelt. Never raises; failures come back in the result."""
    if not settings.sms_enabled:
        return SmsResult(success=False, error='SMS is not configured')
    e164 = format_phone_e164(phone)
    if not e164:
        return SmsResult(success=False, error=f'Invalid phone number: {phone!r}')

    body = json.dumps({'phone': e164, 'message': message, 'key': settings.textbelt_api_key}).encode('utf-8')
    req = Request(
        url=settings.textbelt_api_url,
        data=body,
        headers={'Content-Type': 'application/json', 'Accept': 'application/json'},
        method='POST',
    )
    try:
        with urlopen(req, timeout=settings.sms_timeout_seconds) as response:
            parsed = json.loads(response.read().decode('utf-8'))
    except HTTPError as exc:
        logger.warning('Textbelt returned %s for %s', exc.code, e164)
        return SmsResult(success=False, phone=e164, error=f'HTTP {exc.code}')
    except (URLError, TimeoutError, ValueError) as exc:
        logger.warning('Textbelt request failed for %s: %s', e164, exc)
        return SmsResult(success=False, phone=e164, error=str(exc))

    if not parsed.get('success'):
        logger.warning('Textbelt rejected message to %s: %s', e164, parsed.get('error'))
        return SmsResult(
            success=False,
            phone=e164,
            error=parsed.get('error') or 'Unknown error',
            quota_remaining=parsed.get('quotaRemaining'),
        )
    return SmsResult(
        success=True,
        phone=e164,
        text_id=str(parsed['textId']) if parsed.get('textId') is not None else None,
        quota_remaining=parsed.get('quotaRemaining'),
    )


def _notify(db: Session, *, job, customer_name: str | None, template: str, kind: str, actor_user_id: str | None) -> SmsResult:
    message = template.format(first_name=_first_name(customer_name), shop_name=settings.shop_name)
    result = send_sms(job.phone_number, message)
    log_audit(
        db,
        actor_user_id=actor_user_id,
        action='SMS_SENT' if result.success else 'SMS_FAILED',
        entity_type='job',
        entity_id=job.id,
        metadata={'kind': kind, 'phone': result.phone, 'error': result.error, 'text_id': result.text_id},
    )
    return result


def notify_job_received(db: Session, *, job, customer_name: str | None, actor_user_id: str | None = None) -> SmsResult | None:
    if not settings.sms_enabled:
        return None
    return _notify(
        db,
        job=job,
        customer_name=customer_name,
        template=JOB_RECEIVED_TEMPLATE,
        kind='job_received',
        actor_user_id=actor_user_id,
    )


def notify_job_finished(db: Session, *, job, customer_name: str | None, actor_user_id: str | None = None) -> SmsResult | None:
    if not settings.sms_enabled:
        return None
    return _notify(
        db,
        job=job,
        customer_name=customer_name,
        template=JOB_FINISHED_TEMPLATE,
        kind='job_finished',
        actor_user_id=actor_user_id,
    )
