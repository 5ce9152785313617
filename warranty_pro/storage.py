from typing import List, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from .db_models import UserDB, WarrantyDB
from .errors import NotFound


def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


# Warranty store: read-only access for the notification engine and claim workflow.
# Creation and editing of warranties belongs to the CRUD layer.


def list_warranties(db: Session, user_id: Optional[str] = None) -> List[WarrantyDB]:
    q = db.query(WarrantyDB)
    if user_id is not None:
        q = q.filter(WarrantyDB.user_id == user_id)
    return q.order_by(WarrantyDB.created_at.asc()).all()


def get_warranty(db: Session, warranty_id: str, user_id: str) -> WarrantyDB:
    warranty = (
        db.query(WarrantyDB)
        .filter(WarrantyDB.id == warranty_id, WarrantyDB.user_id == user_id)
        .first()
    )
    if not warranty:
        raise NotFound("Warranty not found", {"warranty_id": warranty_id})
    return warranty


def get_user(db: Session, username: Optional[str]) -> Optional[UserDB]:
    if not username:
        return None
    return db.query(UserDB).filter_by(username=username).first()
