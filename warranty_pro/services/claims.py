"""
Claim filing workflow.

A claim is created in ``pending`` once the user has described the issue, and
is then moved along by the diagnostic chat, the AI e-mail draft, submission
to the manufacturer and later manual status updates. Every operation that
touches a stored claim re-checks that the caller owns both the claim and its
parent warranty.

Failure policy per step:
- diagnostic turn and e-mail generation raise UpstreamUnavailable / GenerationFailed
- severity analysis and troubleshooting suggestions fall back to fixed defaults
- e-mail delivery on submit is recorded on the claim, never raised
"""

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..db_models import ClaimCounterDB, ClaimDB, WarrantyDB
from ..errors import ClaimLocked, GenerationFailed, NotFound, UpstreamUnavailable, WarrantyProError
from ..models import (
    FALLBACK_VERDICT,
    TERMINAL_STATUSES,
    ClaimEmailDraft,
    ClaimOut,
    ClaimStatus,
    ConversationMessage,
    DeliveryResult,
    SeverityVerdict,
    Speaker,
    SubmitResult,
    UserContact,
)
from ..storage import generate_id, get_user, get_warranty
from . import llm
from .audit import log_action
from .delivery import DeliveryChannel, claim_confirmation_html, claim_email_html, get_channel

logger = logging.getLogger(__name__)

CLAIM_COUNTER = "claims"
CLAIM_PREFIX = "CLM"
MAX_NUMBER_ATTEMPTS = 5

DEFAULT_TROUBLESHOOTING_STEPS = [
    "Check that the device is properly powered on",
    "Restart the device",
    "Check for any visible damage",
    "Consult the user manual for specific troubleshooting",
]


# claim numbers ---------------------------------------------------------------------


def ensure_counter(db: Session) -> None:
    if db.get(ClaimCounterDB, CLAIM_COUNTER) is None:
        db.add(ClaimCounterDB(name=CLAIM_COUNTER, value=0))
        db.commit()


def next_claim_number(db: Session) -> str:
    """
    CLM-<epoch ms>-<sequence>. The sequence row is incremented inside the
    caller's transaction, so the number is only consumed if the claim commits.
    """
    updated = (
        db.query(ClaimCounterDB)
        .filter(ClaimCounterDB.name == CLAIM_COUNTER)
        .update({ClaimCounterDB.value: ClaimCounterDB.value + 1}, synchronize_session=False)
    )
    if not updated:
        db.add(ClaimCounterDB(name=CLAIM_COUNTER, value=1))
        db.flush()
    value = db.query(ClaimCounterDB.value).filter(ClaimCounterDB.name == CLAIM_COUNTER).scalar()
    return f"{CLAIM_PREFIX}-{time.time_ns() // 1_000_000}-{value:04d}"


# ownership -------------------------------------------------------------------------


def _owned_claim(db: Session, claim_id: str, owner_id: str) -> ClaimDB:
    q = (
        db.query(ClaimDB)
        .join(WarrantyDB, WarrantyDB.id == ClaimDB.warranty_id)
        .filter(
            ClaimDB.id == claim_id,
            ClaimDB.user_id == owner_id,
            WarrantyDB.user_id == owner_id,
        )
    )
    claim = q.first()
    if not claim:
        raise NotFound("Claim not found", {"claim_id": claim_id})
    return claim


def _ensure_open(claim: ClaimDB) -> None:
    if claim.status and ClaimStatus(claim.status) in TERMINAL_STATUSES:
        raise ClaimLocked("Claim is closed", {"claim_id": claim.id, "status": claim.status})


def get_open_claim(db: Session, claim_id: str, owner_id: str) -> ClaimDB:
    """Owned claim that still accepts changes other than notes."""
    claim = _owned_claim(db, claim_id, owner_id)
    _ensure_open(claim)
    return claim


def _lock_claim(db: Session, claim: ClaimDB) -> None:
    """
    Take the claim's write lock and reload it, so the caller sees every change
    committed before it and none after until it commits. On SQLite the UPDATE
    is what serializes writers; FOR UPDATE covers the other backends.
    """
    db.query(ClaimDB).filter(ClaimDB.id == claim.id).update(
        {ClaimDB.updated_at: datetime.utcnow()}, synchronize_session=False
    )
    db.refresh(claim, with_for_update=True)


def _normalise_history(history: Optional[Sequence[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return [ConversationMessage.model_validate(m).to_json() for m in history or []]


def _touch(claim: ClaimDB) -> None:
    claim.updated_at = datetime.utcnow()


# operations ------------------------------------------------------------------------


def start_claim(
    db: Session,
    owner_id: str,
    warranty_id: str,
    issue_description: str,
    conversation: Optional[Sequence[Dict[str, Any]]] = None,
    troubleshooting_steps: Optional[Sequence[str]] = None,
) -> ClaimDB:
    warranty = get_warranty(db, warranty_id, owner_id)
    transcript = _normalise_history(conversation)
    for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
        now = datetime.utcnow()
        claim = ClaimDB(
            id=generate_id("clm"),
            user_id=owner_id,
            warranty_id=warranty.id,
            claim_number=next_claim_number(db),
            issue_description=issue_description,
            status=ClaimStatus.pending.value,
            conversation=transcript,
            troubleshooting_steps=list(troubleshooting_steps or []),
            created_at=now,
            updated_at=now,
        )
        db.add(claim)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning("claim number collision, retrying (attempt %s)", attempt)
            continue
        db.refresh(claim)
        logger.info("claim %s created for warranty %s", claim.claim_number, warranty.id)
        return claim
    raise RuntimeError("could not allocate a unique claim number")


def send_diagnostic_turn(
    db: Session,
    owner_id: str,
    message: str,
    warranty_id: Optional[str] = None,
    history: Optional[Sequence[Dict[str, Any]]] = None,
    claim_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    One user message and one assistant reply. With claim_id the stored
    transcript is extended; otherwise the caller's history is used and
    nothing is persisted (pre-submission chat).

    Stored turns are appended under the claim's write lock in commit order;
    a turn that overlapped another one keeps both pairs.
    """
    claim: Optional[ClaimDB] = None
    if claim_id:
        claim = get_open_claim(db, claim_id, owner_id)
        warranty = get_warranty(db, claim.warranty_id, owner_id)
        transcript = list(claim.conversation or [])
    else:
        if not warranty_id:
            raise NotFound("Warranty not found")
        warranty = get_warranty(db, warranty_id, owner_id)
        transcript = _normalise_history(history)

    question = ConversationMessage(role=Speaker.user, content=message).to_json()
    transcript.append(question)
    try:
        reply = llm.diagnostic_reply(transcript, warranty)
    except WarrantyProError:
        db.rollback()
        raise
    except Exception as exc:
        db.rollback()
        raise UpstreamUnavailable(f"AI response failed: {exc}") from exc
    answer = ConversationMessage(role=Speaker.assistant, content=reply).to_json()
    transcript.append(answer)

    if claim is not None:
        _lock_claim(db, claim)
        try:
            _ensure_open(claim)
        except ClaimLocked:
            db.rollback()
            raise
        transcript = list(claim.conversation or []) + [question, answer]
        claim.conversation = transcript
        _touch(claim)
        db.commit()
    return transcript


def analyze_severity(issue_description: str, transcript: Optional[Sequence[Dict[str, Any]]] = None) -> SeverityVerdict:
    try:
        return llm.assess_severity(issue_description, list(transcript or []))
    except Exception as exc:
        logger.warning("severity analysis degraded to default", exc_info=exc)
        return FALLBACK_VERDICT.model_copy()


def suggest_troubleshooting(db: Session, owner_id: str, warranty_id: str, issue_description: str) -> List[str]:
    warranty = get_warranty(db, warranty_id, owner_id)
    try:
        steps = llm.troubleshooting_steps(warranty.category, issue_description)
    except Exception as exc:
        logger.warning("troubleshooting generation degraded to defaults", exc_info=exc)
        return list(DEFAULT_TROUBLESHOOTING_STEPS)
    return steps or list(DEFAULT_TROUBLESHOOTING_STEPS)


def generate_claim_email(
    db: Session,
    owner_id: str,
    warranty_id: str,
    issue_description: str,
    troubleshooting_steps: Optional[Sequence[str]] = None,
    conversation_summary: str = "",
    claim_id: Optional[str] = None,
) -> ClaimEmailDraft:
    claim: Optional[ClaimDB] = None
    if claim_id:
        claim = get_open_claim(db, claim_id, owner_id)
        if claim.warranty_id != warranty_id:
            raise NotFound("Claim not found for this warranty", {"claim_id": claim_id, "warranty_id": warranty_id})
    warranty = get_warranty(db, warranty_id, owner_id)
    user = get_user(db, owner_id)
    contact = UserContact(
        name=getattr(user, "name", None),
        email=getattr(user, "email", None),
        phone=getattr(user, "phone", None),
    )
    try:
        draft = llm.compose_claim_email(
            warranty,
            issue_description,
            list(troubleshooting_steps or []),
            conversation_summary,
            contact,
        )
    except WarrantyProError:
        raise
    except Exception as exc:
        raise GenerationFailed(f"Failed to generate claim email: {exc}") from exc

    if claim is not None:
        _lock_claim(db, claim)
        try:
            _ensure_open(claim)
        except ClaimLocked:
            db.rollback()
            raise
        claim.email_subject = draft.subject
        claim.email_body = draft.body
        claim.email_generated_at = datetime.utcnow()
        _touch(claim)
        db.commit()
    return draft


def _send_confirmation(channel: DeliveryChannel, user, claim: ClaimDB, warranty: WarrantyDB) -> None:
    if not user or not user.email:
        return
    try:
        result = channel.send(
            user.email,
            f"Claim submitted: {claim.claim_number}",
            claim_confirmation_html(user.name, claim.claim_number, warranty.product_name, claim.email_sent_to),
        )
        if not result.success:
            logger.warning("claim confirmation not delivered claim=%s: %s", claim.claim_number, result.error)
    except Exception as exc:
        logger.warning("claim confirmation failed claim=%s", claim.claim_number, exc_info=exc)


def submit_claim(
    db: Session,
    claim_id: str,
    owner_id: str,
    manufacturer_email: str,
    subject: str,
    body: str,
    channel: Optional[DeliveryChannel] = None,
) -> SubmitResult:
    channel = channel or get_channel()
    claim = get_open_claim(db, claim_id, owner_id)
    warranty = get_warranty(db, claim.warranty_id, owner_id)
    user = get_user(db, owner_id)

    # the artifact is stored before any delivery attempt
    claim.status = ClaimStatus.pending.value
    if claim.email_subject != subject or claim.email_body != body or claim.email_generated_at is None:
        claim.email_generated_at = datetime.utcnow()
    claim.email_subject = subject
    claim.email_body = body
    _touch(claim)
    db.commit()

    cc = user.email if user and user.email else None
    try:
        result = channel.send(
            manufacturer_email,
            subject,
            claim_email_html(body, warranty.product_name, warranty.brand, warranty.serial_number),
            cc=cc,
            reply_to=cc,
        )
    except Exception as exc:
        logger.warning("claim email channel raised claim=%s", claim.claim_number, exc_info=exc)
        result = DeliveryResult(success=False, error=str(exc) or exc.__class__.__name__)

    if result.success:
        claim.email_sent_at = result.sent_at or datetime.utcnow()
        claim.email_sent_to = manufacturer_email
        claim.email_delivery_failed = False
        claim.email_delivery_error = None
    else:
        claim.email_delivery_failed = True
        claim.email_delivery_error = (result.error or "delivery failed")[:500]
    _touch(claim)
    db.commit()
    db.refresh(claim)

    if result.success:
        _send_confirmation(channel, user, claim, warranty)
        message = "Claim submitted and email sent"
    else:
        log_action("claim_email_failed", f"claim={claim.claim_number} to={manufacturer_email} err={result.error}")
        message = "Claim created, email not sent"
    return SubmitResult(claim=ClaimOut.model_validate(claim), delivery=result, message=message)


def file_claim(
    db: Session,
    owner_id: str,
    warranty_id: str,
    issue_description: str,
    subject: str,
    body: str,
    manufacturer_email: Optional[str] = None,
    conversation: Optional[Sequence[Dict[str, Any]]] = None,
    troubleshooting_steps: Optional[Sequence[str]] = None,
    channel: Optional[DeliveryChannel] = None,
) -> SubmitResult:
    """Create, assess and submit in one call."""
    claim = start_claim(db, owner_id, warranty_id, issue_description, conversation, troubleshooting_steps)
    verdict = analyze_severity(issue_description, claim.conversation)
    claim.severity = verdict.severity.value
    claim.recommend_claim = verdict.recommend_claim
    claim.reasoning = verdict.reasoning
    _touch(claim)
    db.commit()

    if manufacturer_email:
        return submit_claim(db, claim.id, owner_id, manufacturer_email, subject, body, channel)

    claim.email_subject = subject
    claim.email_body = body
    claim.email_generated_at = datetime.utcnow()
    _touch(claim)
    db.commit()
    db.refresh(claim)
    return SubmitResult(
        claim=ClaimOut.model_validate(claim),
        delivery=DeliveryResult(success=False, error="No manufacturer email provided"),
        message="Claim created, email not sent",
    )


def record_assessment(db: Session, claim_id: str, owner_id: str, verdict: SeverityVerdict) -> ClaimDB:
    claim = get_open_claim(db, claim_id, owner_id)
    claim.severity = verdict.severity.value
    claim.recommend_claim = verdict.recommend_claim
    claim.reasoning = verdict.reasoning
    _touch(claim)
    db.commit()
    db.refresh(claim)
    return claim


def update_claim_status(
    db: Session,
    claim_id: str,
    owner_id: str,
    new_status: ClaimStatus,
    notes: Optional[str] = None,
) -> ClaimDB:
    """
    completed and rejected are closed: only notes may change once there.
    completed can only follow approved.
    """
    claim = _owned_claim(db, claim_id, owner_id)
    current = ClaimStatus(claim.status)
    if current in TERMINAL_STATUSES and new_status != current:
        raise ClaimLocked(f"Claim is {current.value}; status can no longer change", {"claim_id": claim_id})
    if new_status == ClaimStatus.completed and current not in (ClaimStatus.approved, ClaimStatus.completed):
        raise ClaimLocked("Only approved claims can be completed", {"claim_id": claim_id})
    claim.status = new_status.value
    if notes is not None:
        claim.notes = notes
    _touch(claim)
    db.commit()
    db.refresh(claim)
    logger.info("claim %s status %s -> %s", claim.claim_number, current.value, new_status.value)
    return claim


def delete_claim(db: Session, claim_id: str, owner_id: str) -> None:
    claim = _owned_claim(db, claim_id, owner_id)
    db.delete(claim)
    db.commit()


def get_claim(db: Session, claim_id: str, owner_id: str) -> ClaimDB:
    return _owned_claim(db, claim_id, owner_id)


def list_claims(
    db: Session,
    owner_id: str,
    status: Optional[ClaimStatus] = None,
    warranty_id: Optional[str] = None,
) -> List[ClaimDB]:
    q = (
        db.query(ClaimDB)
        .join(WarrantyDB, WarrantyDB.id == ClaimDB.warranty_id)
        .filter(ClaimDB.user_id == owner_id, WarrantyDB.user_id == owner_id)
    )
    if status is not None:
        q = q.filter(ClaimDB.status == status.value)
    if warranty_id:
        q = q.filter(ClaimDB.warranty_id == warranty_id)
    return q.order_by(ClaimDB.created_at.desc()).all()
