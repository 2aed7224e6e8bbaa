"""
Voice reminder endpoints: call requests from the scheduler and status
callbacks from the voice vendor.
"""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.v1.deps import verify_webhook_secret, verify_worker_token
from app.core.config import AlertRunConfig, settings
from app.core.logger import logger
from app.db.database import get_db
from app.db.schemas import VoiceCallCreate, VoiceCallResponse, WebhookAck
from app.services.voice.call_gate import VoiceCallGate, VoiceCallRequest
from app.services.voice.call_status import CallStatusPayload, apply_call_status
from app.utils.exceptions import ConfigurationError, PersistenceUnavailableError

router = APIRouter()


@router.post(
    "/calls",
    response_model=VoiceCallResponse,
    dependencies=[Depends(verify_worker_token)],
)
def request_voice_call(
    payload: VoiceCallCreate,
    db: Session = Depends(get_db),
):
    try:
        config = AlertRunConfig.from_settings(settings).validate_voice()
        result = asyncio.run(VoiceCallGate(config).request_call(
            db,
            VoiceCallRequest(
                user_id=str(payload.user_id),
                vehicle_id=str(payload.vehicle_id),
                document_type=payload.document_type,
                days_until_expiry=payload.days_until_expiry,
                owner_name=payload.owner_name,
                registration_number=payload.registration_number,
            ),
        ))
    except ConfigurationError as e:
        logger.error("voice/calls: configuration error: %s", e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    except PersistenceUnavailableError as e:
        logger.error("voice/calls: gate state unavailable: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Voice call state unavailable",
        )
    return VoiceCallResponse(**result.as_dict())


@router.post(
    "/webhook",
    response_model=WebhookAck,
    response_model_exclude_none=True,
    dependencies=[Depends(verify_webhook_secret)],
)
def voice_status_webhook(
    payload: CallStatusPayload = Body(...),
    db: Session = Depends(get_db),
):
    try:
        return apply_call_status(db, payload)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("voice/webhook: failed to update call log")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update call log",
        )
