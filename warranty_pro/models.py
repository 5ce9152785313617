from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AlertKind(str, Enum):
    thirty_day = "thirty_day"
    seven_day = "seven_day"
    expiry_day = "expiry_day"
    expired = "expired"


class ClaimStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    approved = "approved"
    rejected = "rejected"
    completed = "completed"


TERMINAL_STATUSES = {ClaimStatus.completed, ClaimStatus.rejected}


class Severity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


def _normalise_severity(value):
    if isinstance(value, str) and not isinstance(value, Enum):
        return value.strip().lower()
    return value


class Speaker(str, Enum):
    user = "user"
    assistant = "assistant"


class ConversationMessage(BaseModel):
    role: Speaker
    content: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    def to_json(self) -> dict:
        return {"role": self.role.value, "content": self.content, "timestamp": self.timestamp.isoformat()}


class Warranty(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: Optional[str] = None
    product_name: str
    brand: Optional[str] = None
    category: Optional[str] = None
    serial_number: Optional[str] = None
    retailer: Optional[str] = None
    purchase_date: date
    coverage_months: int = Field(ge=0)


class SeverityVerdict(BaseModel):
    severity: Severity
    recommend_claim: bool = Field(alias="recommendClaim")
    reasoning: str = ""

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("severity", mode="before")
    @classmethod
    def _lower_severity(cls, value):
        return _normalise_severity(value)


FALLBACK_VERDICT = SeverityVerdict(
    severity=Severity.medium,
    recommend_claim=True,
    reasoning="unable to analyze automatically",
)


class ClaimEmailDraft(BaseModel):
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)
    severity: Severity = Severity.medium

    @field_validator("severity", mode="before")
    @classmethod
    def _lower_severity(cls, value):
        if value is None or value == "":
            return Severity.medium
        return _normalise_severity(value)


class TroubleshootingSteps(BaseModel):
    steps: List[str] = Field(min_length=1)


class UserContact(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class DeliveryResult(BaseModel):
    success: bool
    sent_at: Optional[datetime] = None
    message_id: Optional[str] = None
    error: Optional[str] = None


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    warranty_id: str
    type: AlertKind
    title: str
    message: str
    product_name: Optional[str] = None
    expiry_date: Optional[date] = None
    days_until_expiry: Optional[int] = None
    sent_at: datetime
    read_at: Optional[datetime] = None
    delivery_attempted: bool = False
    delivery_success: bool = False
    delivered_at: Optional[datetime] = None


class ClaimOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    warranty_id: str
    claim_number: str
    issue_description: str
    status: ClaimStatus
    conversation: List[ConversationMessage] = Field(default_factory=list)
    troubleshooting_steps: List[str] = Field(default_factory=list)
    severity: Optional[Severity] = None
    recommend_claim: Optional[bool] = None
    reasoning: Optional[str] = None
    email_subject: Optional[str] = None
    email_body: Optional[str] = None
    email_generated_at: Optional[datetime] = None
    email_sent_at: Optional[datetime] = None
    email_sent_to: Optional[str] = None
    email_delivery_failed: bool = False
    email_delivery_error: Optional[str] = None
    notes: Optional[str] = None
    resolution: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("conversation", "troubleshooting_steps", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return value or []


class SubmitResult(BaseModel):
    claim: ClaimOut
    delivery: DeliveryResult
    message: str
