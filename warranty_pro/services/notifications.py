import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db_models import NotificationDB
from ..errors import Conflict, NotFound
from ..models import AlertKind, DeliveryResult
from ..storage import generate_id

logger = logging.getLogger(__name__)


def has_notification(db: Session, user_id: str, warranty_id: str, kind: AlertKind) -> bool:
    existing = (
        db.query(NotificationDB.id)
        .filter(
            NotificationDB.user_id == user_id,
            NotificationDB.warranty_id == warranty_id,
            NotificationDB.type == kind.value,
        )
        .first()
    )
    return existing is not None


def _insert(db: Session, n: NotificationDB) -> NotificationDB:
    db.add(n)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict("Notification already recorded", {"warranty_id": n.warranty_id, "type": n.type}) from exc
    db.refresh(n)
    return n


def record_notification(
    db: Session,
    user_id: str,
    warranty_id: str,
    kind: AlertKind,
    title: str,
    message: str,
    product_name: Optional[str] = None,
    expiry_date: Optional[date] = None,
    days_until_expiry: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[NotificationDB]:
    """
    Persist one alert for (user, warranty, kind).
    Returns None when the alert already exists, including when a concurrent run
    inserted it between the lookup and the write.
    """
    if has_notification(db, user_id, warranty_id, kind):
        return None
    n = NotificationDB(
        id=generate_id("ntf"),
        user_id=user_id,
        warranty_id=warranty_id,
        type=kind.value,
        title=title,
        message=message,
        product_name=product_name,
        expiry_date=expiry_date,
        days_until_expiry=days_until_expiry,
        sent_at=now or datetime.utcnow(),
        delivery_attempted=False,
        delivery_success=False,
    )
    try:
        return _insert(db, n)
    except Conflict:
        logger.info("notification %s for warranty %s already recorded by another run", kind.value, warranty_id)
        return None


def record_delivery(db: Session, n: NotificationDB, result: DeliveryResult) -> NotificationDB:
    n.delivery_attempted = True
    n.delivery_success = result.success
    n.delivered_at = result.sent_at if result.success else None
    n.delivery_error = None if result.success else (result.error or "delivery failed")[:500]
    db.add(n)
    db.commit()
    db.refresh(n)
    return n


def list_notifications(
    db: Session,
    user_id: str,
    limit: int = 50,
    only_unread: bool = False,
) -> List[NotificationDB]:
    q = db.query(NotificationDB).filter(NotificationDB.user_id == user_id)
    if only_unread:
        q = q.filter(NotificationDB.read_at.is_(None))
    return q.order_by(NotificationDB.sent_at.desc()).limit(limit).all()


def unread_count(db: Session, user_id: str) -> int:
    return (
        db.query(NotificationDB)
        .filter(NotificationDB.user_id == user_id, NotificationDB.read_at.is_(None))
        .count()
    )


def mark_read(db: Session, notification_id: str, user_id: str) -> NotificationDB:
    n = (
        db.query(NotificationDB)
        .filter(
            NotificationDB.id == notification_id,
            NotificationDB.user_id == user_id,
        )
        .first()
    )
    if not n:
        raise NotFound("Notification not found", {"notification_id": notification_id})
    if n.read_at is None:
        n.read_at = datetime.utcnow()
        db.add(n)
        db.commit()
        db.refresh(n)
    return n


def mark_all_read(db: Session, user_id: str) -> int:
    updated = (
        db.query(NotificationDB)
        .filter(NotificationDB.user_id == user_id, NotificationDB.read_at.is_(None))
        .update({NotificationDB.read_at: datetime.utcnow()}, synchronize_session=False)
    )
    db.commit()
    return updated
