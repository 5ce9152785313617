from fastapi import APIRouter, Depends, Query

from ..db_models import UserDB
from ..deps import get_db, require_user
from ..models import NotificationOut
from ..services import notifications as notification_service
from ..services.delivery import DeliveryChannel, get_channel
from ..services.expiry import run_expiry_check

router = APIRouter()


@router.get("")
def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    only_unread: bool = False,
    db=Depends(get_db),
    current: UserDB = Depends(require_user),
):
    items = notification_service.list_notifications(db, current.username, limit=limit, only_unread=only_unread)
    return {
        "notifications": [NotificationOut.model_validate(n) for n in items],
        "unread_count": notification_service.unread_count(db, current.username),
    }


@router.get("/unread-count")
def unread_count(db=Depends(get_db), current: UserDB = Depends(require_user)):
    return {"count": notification_service.unread_count(db, current.username)}


@router.post("/read-all")
def mark_all_read(db=Depends(get_db), current: UserDB = Depends(require_user)):
    return {"updated": notification_service.mark_all_read(db, current.username)}


@router.post("/sync")
def sync_notifications(
    db=Depends(get_db),
    current: UserDB = Depends(require_user),
    channel: DeliveryChannel = Depends(get_channel),
):
    created = run_expiry_check(db, user_id=current.username, channel=channel)
    return {"created": created}


@router.post("/{notification_id}/read")
@router.patch("/{notification_id}/read")
def mark_read(notification_id: str, db=Depends(get_db), current: UserDB = Depends(require_user)):
    n = notification_service.mark_read(db, notification_id, current.username)
    return {"notification": NotificationOut.model_validate(n)}
