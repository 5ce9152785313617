"""
Expiry notification engine.

Each run maps every warranty in scope to at most one alert kind based on the
exact number of days left, and records that alert once per
(owner, warranty, kind). Delivery is attempted only for newly recorded alerts
and its outcome is stored on the record; a failed send never removes it.

Thresholds match exact day counts, so a day on which the check does not run
skips that warranty's 30/7/0 alert for good. Expired alerts are unaffected.
"""

import calendar
import logging
import math
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from ..db_models import WarrantyDB
from ..models import AlertKind
from ..storage import get_user, list_warranties
from . import notifications as ledger
from .audit import log_action
from .delivery import DeliveryChannel, expiry_alert_html, get_channel

logger = logging.getLogger(__name__)

THRESHOLDS = {
    30: AlertKind.thirty_day,
    7: AlertKind.seven_day,
    0: AlertKind.expiry_day,
}


def compute_expiry_date(purchase_date: date, coverage_months: int) -> date:
    """Purchase date plus N calendar months; the day is clamped to the month's last day."""
    if coverage_months < 0:
        raise ValueError("coverage_months must be >= 0")
    month_index = purchase_date.month - 1 + coverage_months
    year = purchase_date.year + month_index // 12
    month = month_index % 12 + 1
    day = min(purchase_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def days_until_expiry(expiry_date: date, now: datetime) -> int:
    delta = datetime.combine(expiry_date, time.min) - now
    return math.ceil(delta / timedelta(days=1))


def alert_kind_for(days: int) -> Optional[AlertKind]:
    if days < 0:
        return AlertKind.expired
    return THRESHOLDS.get(days)


def _fmt(value: date) -> str:
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def notification_content(kind: AlertKind, product_name: str, expiry_date: date) -> Tuple[str, str]:
    when = _fmt(expiry_date)
    if kind == AlertKind.thirty_day:
        return (
            f"Warranty Expiring Soon: {product_name}",
            f"Your warranty for {product_name} expires in 30 days ({when}). "
            "Schedule an inspection now to make the most of your coverage.",
        )
    if kind == AlertKind.seven_day:
        return (
            f"Last Week of Warranty: {product_name}",
            f"Your warranty for {product_name} expires in 7 days ({when}). "
            "This is your last chance to claim any issues.",
        )
    if kind == AlertKind.expiry_day:
        return (
            f"Warranty Expires Today: {product_name}",
            f"Your warranty for {product_name} expires today ({when}). "
            "Take action now if you have any issues.",
        )
    return (
        f"Warranty Expired: {product_name}",
        f"Your warranty for {product_name} has expired as of {when}.",
    )


def process_warranty(
    db: Session,
    warranty: WarrantyDB,
    now: datetime,
    channel: DeliveryChannel,
) -> int:
    if not warranty.user_id or warranty.purchase_date is None:
        return 0
    owner = get_user(db, warranty.user_id)
    if owner is None:
        return 0

    expiry_date = compute_expiry_date(warranty.purchase_date, warranty.coverage_months or 0)
    days = days_until_expiry(expiry_date, now)
    kind = alert_kind_for(days)
    if kind is None:
        return 0

    title, message = notification_content(kind, warranty.product_name, expiry_date)
    record = ledger.record_notification(
        db,
        user_id=owner.username,
        warranty_id=warranty.id,
        kind=kind,
        title=title,
        message=message,
        product_name=warranty.product_name,
        expiry_date=expiry_date,
        days_until_expiry=days,
        now=now,
    )
    if record is None:
        return 0

    if owner.email and owner.email_notifications:
        body = expiry_alert_html(
            warranty.product_name,
            warranty.brand,
            kind,
            expiry_date,
            warranty.purchase_date,
            warranty.coverage_months or 0,
        )
        result = channel.send(owner.email, title, body)
        ledger.record_delivery(db, record, result)
        if result.success:
            logger.info("sent %s alert for %s to %s", kind.value, warranty.product_name, owner.email)
    return 1


def run_expiry_check(
    db: Session,
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
    channel: Optional[DeliveryChannel] = None,
) -> int:
    """
    Scope is every warranty when user_id is None, otherwise the user's own.
    Returns the number of notifications created by this run.
    """
    now = now or datetime.utcnow()
    channel = channel or get_channel()
    sent = 0
    for warranty in list_warranties(db, user_id):
        try:
            sent += process_warranty(db, warranty, now, channel)
        except Exception as exc:
            db.rollback()
            logger.exception("expiry check failed for warranty %s", warranty.id, exc_info=exc)
    scope = f"user={user_id}" if user_id else "all"
    logger.info("expiry check scope=%s created=%s", scope, sent)
    log_action("expiry_check", f"scope={scope} created={sent} at={now.isoformat()}")
    return sent
