"""
Pydantic validation schemas
"""
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.db.models import DocumentType

# ============================================================================
# Expiry alert worker
# ============================================================================

class SkippedItem(BaseModel):
    scope: str
    id: str
    reason: str
    error: Optional[str] = None


class AlertRunResponse(BaseModel):
    """Aggregate counts of one expiry alert run"""
    ok: bool = True
    run_date: str
    evaluated: int
    candidates: int
    new_alerts: int
    recipients: int
    emails_sent: int
    notifications_logged: int
    already_logged: int
    history_logged: int
    voice_calls: int
    skipped: List[SkippedItem] = Field(default_factory=list)
    dry_run: bool


# ============================================================================
# Voice calls
# ============================================================================

class VoiceCallCreate(BaseModel):
    """Request a reminder call for one document of one vehicle"""
    model_config = ConfigDict(populate_by_name=True)

    user_id: UUID = Field(..., alias="userId")
    vehicle_id: UUID = Field(..., alias="vehicleId")
    document_type: str = Field(..., alias="documentType")
    days_until_expiry: int = Field(..., alias="daysUntilExpiry")
    owner_name: Optional[str] = Field(None, alias="ownerName", max_length=255)
    registration_number: Optional[str] = Field(None, alias="registrationNumber", max_length=20)

    @field_validator("document_type")
    @classmethod
    def known_document(cls, v: str) -> str:
        value = v.strip().lower()
        allowed = {d.value for d in DocumentType}
        if value not in allowed:
            raise ValueError(f"documentType must be one of {sorted(allowed)}")
        return value


class VoiceCallResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    reason: Optional[str] = None
    call_id: Optional[str] = Field(None, serialization_alias="callId")
    phone_number: Optional[str] = Field(None, serialization_alias="phoneNumber")
    language: Optional[str] = None
    hours_remaining: Optional[int] = Field(None, serialization_alias="hoursRemaining")


class WebhookAck(BaseModel):
    success: bool = True
    updated: int = 0
    message: Optional[str] = None
    execution_id: Optional[str] = None
    new_status: Optional[str] = None
