import logging
from datetime import datetime

from ..db import SessionLocal
from ..db_models import AuditLogDB

logger = logging.getLogger(__name__)

MAX_DETAIL_LEN = 2000


def _trim(detail: str) -> str:
    if len(detail) > MAX_DETAIL_LEN:
        return detail[:MAX_DETAIL_LEN] + "...(truncated)"
    return detail


def log_action(action: str, detail: str) -> None:
    """Write an audit row in its own session so callers' transactions are untouched."""
    try:
        with SessionLocal() as db:
            db.add(AuditLogDB(action=action, detail=_trim(detail), created_at=datetime.utcnow()))
            db.commit()
    except Exception as exc:
        logger.warning("audit log write failed action=%s", action, exc_info=exc)


def log_redacted(action: str, content: str, keep: int = 128) -> None:
    snippet = content[:keep]
    log_action(action, f"len={len(content)} preview={snippet}")
