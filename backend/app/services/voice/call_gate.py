"""
Voice reminder gate.

Each (user, vehicle, document type) key moves from eligible to one of
suppressed or dispatched. Preconditions are checked in order and the first
one that fails ends the request with a skipped result:

    suspended -> phone number -> channel enabled -> cooldown -> daily ceiling

A vendor failure is logged as a ``failed`` call and leaves the cooldown
alone so a later retry is allowed. A success is logged as ``initiated`` and
refreshes the cooldown for the key.
"""
from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import AlertRunConfig
from app.core.logger import logger, mask_phone
from app.db.models import VoiceCallStatus, utcnow
from app.services.voice.bolna_client import BolnaClient
from app.services.voice.call_store import VoiceCallStore, voice_call_store
from app.services.voice.messages import (
    DEFAULT_LANGUAGE_INSTRUCTION,
    DEFAULT_OWNER_NAME,
    default_welcome,
    days_message,
    document_label,
    fill_placeholders,
)
from app.utils.exceptions import PersistenceUnavailableError, VoiceVendorError

STATUS_DISPATCHED = "dispatched"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


@dataclass
class VoiceCallRequest:
    user_id: str
    vehicle_id: str
    document_type: str
    days_until_expiry: int
    owner_name: Optional[str] = None
    registration_number: Optional[str] = None


@dataclass
class VoiceCallResult:
    status: str
    reason: Optional[str] = None
    call_id: Optional[str] = None
    phone_number: Optional[str] = None
    language: Optional[str] = None
    hours_remaining: Optional[int] = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def normalize_indian_phone(phone: Optional[str]) -> Optional[str]:
    """Ten local digits, or None when the number is unusable."""
    digits = re.sub(r"\D", "", re.sub(r"^\+91", "", (phone or "").strip()))
    return digits if len(digits) == 10 else None


class VoiceCallGate:
    def __init__(
        self,
        config: AlertRunConfig,
        store: Optional[VoiceCallStore] = None,
        client: Optional[BolnaClient] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.store = store or voice_call_store
        self.client = client or BolnaClient(config)
        self.clock = clock

    def _day_start(self, now: datetime) -> datetime:
        """Local midnight of ``now`` (naive UTC) expressed as naive UTC."""
        tz = ZoneInfo(self.config.timezone)
        local = now.replace(tzinfo=timezone.utc).astimezone(tz)
        midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
        return midnight.astimezone(timezone.utc).replace(tzinfo=None)

    def _check(self, db: Session, req: VoiceCallRequest, now: datetime):
        """Run the preconditions. Returns (skipped result or None, profile)."""
        if self.store.is_suspended(db, req.user_id):
            logger.info("Voice call skipped user=%s: suspended", req.user_id)
            return VoiceCallResult(status=STATUS_SKIPPED, reason="user_suspended"), None

        profile = self.store.get_profile(db, req.user_id)
        if profile is None or not (profile.phone_number or "").strip():
            return VoiceCallResult(status=STATUS_SKIPPED, reason="no_phone_number"), None
        if normalize_indian_phone(profile.phone_number) is None:
            logger.info("Voice call skipped user=%s: bad phone %s", req.user_id, mask_phone(profile.phone_number))
            return VoiceCallResult(status=STATUS_SKIPPED, reason="invalid_phone_number"), None

        if not profile.voice_reminders_enabled:
            return VoiceCallResult(status=STATUS_SKIPPED, reason="voice_reminders_disabled"), None

        cooldown = self.store.get_cooldown(db, req.user_id, req.vehicle_id, req.document_type)
        if cooldown is not None:
            hours_since = (now - cooldown.last_call_at).total_seconds() / 3600
            if hours_since < self.config.voice_cooldown_hours:
                logger.info(
                    "Voice call skipped user=%s vehicle=%s doc=%s: cooldown %.1fh",
                    req.user_id, req.vehicle_id, req.document_type, hours_since,
                )
                return VoiceCallResult(
                    status=STATUS_SKIPPED,
                    reason="cooldown_active",
                    hours_remaining=math.ceil(self.config.voice_cooldown_hours - hours_since),
                ), None

        calls_today = self.store.count_calls_since(db, req.user_id, self._day_start(now))
        if calls_today >= self.config.voice_max_calls_per_day:
            logger.info("Voice call skipped user=%s: daily limit (%d)", req.user_id, calls_today)
            return VoiceCallResult(status=STATUS_SKIPPED, reason="daily_limit_reached"), None

        return None, profile

    async def request_call(self, db: Session, req: VoiceCallRequest) -> VoiceCallResult:
        now = self.clock()

        try:
            skipped, profile = self._check(db, req, now)
            if skipped is not None:
                return skipped

            owner_name = req.owner_name
            registration = req.registration_number
            if not owner_name or not registration:
                vehicle = self.store.get_vehicle(db, req.vehicle_id)
                if vehicle is None:
                    return VoiceCallResult(status=STATUS_SKIPPED, reason="vehicle_not_found")
                owner_name = owner_name or vehicle.owner_name or DEFAULT_OWNER_NAME
                registration = registration or vehicle.registration_number

            agent = self.store.get_active_agent(db)
            if agent is None or not agent.bolna_agent_id:
                logger.warning("Voice call skipped: no active voice agent configured")
                return VoiceCallResult(status=STATUS_SKIPPED, reason="no_voice_agent")

            language = (profile.preferred_language or self.config.voice_default_language).strip().lower()
            template = self.store.get_language_template(db, language)
            if template is None and language != self.config.voice_default_language:
                template = self.store.get_language_template(db, self.config.voice_default_language)
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceUnavailableError(f"Voice gate read failed: {exc}") from exc

        doc_label = document_label(req.document_type, language)
        days_text = days_message(req.days_until_expiry, language)

        def fill(text: str) -> str:
            return fill_placeholders(text, owner_name, registration, doc_label, days_text)

        welcome = fill(template.welcome_message) if template and template.welcome_message else default_welcome(owner_name, registration)
        payload: dict[str, Any] = {
            "agent_id": agent.bolna_agent_id,
            "recipient_phone_number": profile.phone_number,
            "from_phone_number": self.config.voice_caller_id,
            "user_data": {
                "owner_name": owner_name,
                "vehicle_number": registration,
                "document_type": doc_label,
                "days_message": days_text,
                "language": language,
                "language_instruction": (
                    template.language_instruction if template and template.language_instruction
                    else DEFAULT_LANGUAGE_INSTRUCTION
                ),
                "welcome_message": welcome,
            },
        }
        if template and template.system_prompt:
            payload["agent_prompt"] = fill(template.system_prompt)

        masked = mask_phone(profile.phone_number)
        try:
            call_id = await self.client.place_call(payload)
        except VoiceVendorError as exc:
            logger.error("Voice call failed user=%s to=%s: %s", req.user_id, masked, exc)
            try:
                self.store.append_call_log(
                    db, req.user_id, req.vehicle_id, req.document_type,
                    VoiceCallStatus.failed.value, language,
                )
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Could not record failed voice call for user %s", req.user_id)
            return VoiceCallResult(
                status=STATUS_FAILED,
                reason="vendor_error",
                phone_number=masked,
                language=language,
            )

        result = VoiceCallResult(
            status=STATUS_DISPATCHED,
            call_id=call_id or None,
            phone_number=masked,
            language=language,
        )
        try:
            self.store.append_call_log(
                db, req.user_id, req.vehicle_id, req.document_type,
                VoiceCallStatus.initiated.value, language, call_id=call_id,
            )
            self.store.upsert_cooldown(db, req.user_id, req.vehicle_id, req.document_type, now=now)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Voice call %s placed but not recorded for user %s", call_id, req.user_id)
            result.reason = "log_write_failed"
        return result
