"""
Applies voice vendor status callbacks to the call log.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from app.core.logger import logger
from app.db.models import utcnow
from app.services.voice.call_store import VoiceCallStore, voice_call_store

VENDOR_STATUS_MAP = {
    "call-completed": "completed",
    "completed": "completed",
    "call-failed": "failed",
    "failed": "failed",
    "no-answer": "no_answer",
    "no_answer": "no_answer",
    "busy": "busy",
    "in-progress": "in_progress",
    "in_progress": "in_progress",
}


class TelephonyData(BaseModel):
    model_config = ConfigDict(extra="allow")

    recording_url: Optional[str] = None
    hangup_reason: Optional[str] = None
    duration: Optional[float] = None


class CallStatusPayload(BaseModel):
    """Vendor callback body. The vendor sends the same facts under several names."""
    model_config = ConfigDict(extra="allow")

    execution_id: Optional[str] = None
    call_id: Optional[str] = None
    id: Optional[str] = None
    status: Optional[str] = None
    call_status: Optional[str] = None
    transcript: Optional[str] = None
    conversation_transcript: Optional[str] = None
    conversation_time: Optional[float] = None
    duration: Optional[float] = None
    telephony_data: Optional[TelephonyData] = None
    recording_url: Optional[str] = None
    hangup_reason: Optional[str] = None

    @property
    def vendor_call_id(self) -> Optional[str]:
        return self.execution_id or self.call_id or self.id

    @property
    def raw_status(self) -> Optional[str]:
        return self.status or self.call_status


def map_vendor_status(status: Optional[str]) -> Optional[str]:
    if not status:
        return None
    return VENDOR_STATUS_MAP.get(status.strip().lower(), status)


def apply_call_status(
    db: Session,
    payload: CallStatusPayload,
    store: Optional[VoiceCallStore] = None,
) -> dict[str, Any]:
    store = store or voice_call_store
    call_id = payload.vendor_call_id
    if not call_id:
        logger.info("Voice webhook without call id, acknowledged")
        return {"success": True, "updated": 0, "message": "No call id in payload, no update needed"}

    existing = store.get_call_by_vendor_id(db, call_id)
    if existing is None:
        logger.info("Voice webhook for unknown call %s, acknowledged", call_id)
        return {"success": True, "updated": 0, "message": "Call log not found"}

    new_status = map_vendor_status(payload.raw_status)
    if new_status is None or existing.status == new_status:
        return {
            "success": True,
            "updated": 0,
            "execution_id": call_id,
            "message": "Status unchanged, no update needed",
        }

    telephony = payload.telephony_data or TelephonyData()
    conversation_time = payload.conversation_time or payload.duration
    if conversation_time:
        duration = round(conversation_time)
    elif telephony.duration:
        duration = round(telephony.duration)
    else:
        duration = None

    values: dict[str, Any] = {"status": new_status, "updated_at": utcnow()}
    if duration is not None:
        values["duration_seconds"] = duration
    transcript = payload.transcript or payload.conversation_transcript
    if transcript:
        values["transcript"] = transcript
    recording_url = telephony.recording_url or payload.recording_url
    if recording_url:
        values["recording_url"] = recording_url
    hangup_reason = payload.hangup_reason or telephony.hangup_reason
    if hangup_reason:
        values["hangup_reason"] = hangup_reason

    updated = store.update_call(db, call_id, values)
    db.commit()
    logger.info("Voice call %s status %s -> %s", call_id, existing.status, new_status)
    return {"success": True, "updated": updated, "execution_id": call_id, "new_status": new_status}
