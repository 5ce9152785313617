from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..db_models import UserDB
from ..deps import get_db, require_user
from ..models import ClaimOut, ClaimStatus, ConversationMessage
from ..services import claims as claim_service
from ..services.delivery import DeliveryChannel, get_channel

router = APIRouter()


class DiagnoseRequest(BaseModel):
    warranty_id: str
    message: str = Field(min_length=1)
    conversation_history: List[ConversationMessage] = Field(default_factory=list)


class ClaimDiagnoseRequest(BaseModel):
    message: str = Field(min_length=1)


class SeverityRequest(BaseModel):
    issue_description: str = Field(min_length=1)
    conversation_history: List[ConversationMessage] = Field(default_factory=list)
    claim_id: Optional[str] = None


class TroubleshootingRequest(BaseModel):
    warranty_id: str
    issue_description: str = Field(min_length=1)


class GenerateEmailRequest(BaseModel):
    warranty_id: str
    issue_description: str = Field(min_length=1)
    troubleshooting_steps: List[str] = Field(default_factory=list)
    conversation_summary: str = ""
    claim_id: Optional[str] = None


class StartClaimRequest(BaseModel):
    warranty_id: str
    issue_description: str = Field(min_length=1)
    conversation_history: List[ConversationMessage] = Field(default_factory=list)
    troubleshooting_steps: List[str] = Field(default_factory=list)


class SubmitRequest(BaseModel):
    manufacturer_email: str = Field(min_length=3)
    email_subject: str = Field(min_length=1)
    email_body: str = Field(min_length=1)


class FileClaimRequest(StartClaimRequest):
    email_subject: str = Field(min_length=1)
    email_body: str = Field(min_length=1)
    manufacturer_email: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: ClaimStatus
    notes: Optional[str] = None


def _history(items: List[ConversationMessage]) -> List[dict]:
    return [m.to_json() for m in items]


@router.post("/diagnose")
def diagnose(payload: DiagnoseRequest, db=Depends(get_db), current: UserDB = Depends(require_user)):
    transcript = claim_service.send_diagnostic_turn(
        db,
        current.username,
        payload.message,
        warranty_id=payload.warranty_id,
        history=_history(payload.conversation_history),
    )
    return {"response": transcript[-1]["content"], "conversation_history": transcript}


@router.post("/analyze-severity")
def analyze_severity(payload: SeverityRequest, db=Depends(get_db), current: UserDB = Depends(require_user)):
    if payload.claim_id:
        claim_service.get_open_claim(db, payload.claim_id, current.username)
    verdict = claim_service.analyze_severity(payload.issue_description, _history(payload.conversation_history))
    if payload.claim_id:
        claim_service.record_assessment(db, payload.claim_id, current.username, verdict)
    return verdict


@router.post("/generate-troubleshooting")
def generate_troubleshooting(
    payload: TroubleshootingRequest, db=Depends(get_db), current: UserDB = Depends(require_user)
):
    steps = claim_service.suggest_troubleshooting(db, current.username, payload.warranty_id, payload.issue_description)
    return {"troubleshooting_steps": steps}


@router.post("/generate-email")
def generate_email(payload: GenerateEmailRequest, db=Depends(get_db), current: UserDB = Depends(require_user)):
    return claim_service.generate_claim_email(
        db,
        current.username,
        payload.warranty_id,
        payload.issue_description,
        payload.troubleshooting_steps,
        payload.conversation_summary,
        claim_id=payload.claim_id,
    )


@router.post("/submit")
def file_claim(
    payload: FileClaimRequest,
    db=Depends(get_db),
    current: UserDB = Depends(require_user),
    channel: DeliveryChannel = Depends(get_channel),
):
    return claim_service.file_claim(
        db,
        current.username,
        payload.warranty_id,
        payload.issue_description,
        payload.email_subject,
        payload.email_body,
        manufacturer_email=payload.manufacturer_email,
        conversation=_history(payload.conversation_history),
        troubleshooting_steps=payload.troubleshooting_steps,
        channel=channel,
    )


@router.post("", response_model=ClaimOut, status_code=201)
def start_claim(payload: StartClaimRequest, db=Depends(get_db), current: UserDB = Depends(require_user)):
    return claim_service.start_claim(
        db,
        current.username,
        payload.warranty_id,
        payload.issue_description,
        conversation=_history(payload.conversation_history),
        troubleshooting_steps=payload.troubleshooting_steps,
    )


@router.get("", response_model=List[ClaimOut])
def list_claims(
    status: Optional[ClaimStatus] = None,
    warranty_id: Optional[str] = None,
    db=Depends(get_db),
    current: UserDB = Depends(require_user),
):
    return claim_service.list_claims(db, current.username, status=status, warranty_id=warranty_id)


@router.get("/{claim_id}", response_model=ClaimOut)
def get_claim(claim_id: str, db=Depends(get_db), current: UserDB = Depends(require_user)):
    return claim_service.get_claim(db, claim_id, current.username)


@router.post("/{claim_id}/diagnose")
def diagnose_claim(
    claim_id: str, payload: ClaimDiagnoseRequest, db=Depends(get_db), current: UserDB = Depends(require_user)
):
    transcript = claim_service.send_diagnostic_turn(db, current.username, payload.message, claim_id=claim_id)
    return {"response": transcript[-1]["content"], "conversation_history": transcript}


@router.post("/{claim_id}/submit")
def submit_claim(
    claim_id: str,
    payload: SubmitRequest,
    db=Depends(get_db),
    current: UserDB = Depends(require_user),
    channel: DeliveryChannel = Depends(get_channel),
):
    return claim_service.submit_claim(
        db,
        claim_id,
        current.username,
        payload.manufacturer_email,
        payload.email_subject,
        payload.email_body,
        channel=channel,
    )


@router.patch("/{claim_id}/status", response_model=ClaimOut)
def update_status(
    claim_id: str, payload: StatusUpdateRequest, db=Depends(get_db), current: UserDB = Depends(require_user)
):
    return claim_service.update_claim_status(db, claim_id, current.username, payload.status, payload.notes)


@router.delete("/{claim_id}")
def delete_claim(claim_id: str, db=Depends(get_db), current: UserDB = Depends(require_user)):
    claim_service.delete_claim(db, claim_id, current.username)
    return {"success": True, "message": "Claim deleted successfully"}
