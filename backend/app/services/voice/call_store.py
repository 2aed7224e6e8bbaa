from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.db.models import (
    Profile,
    UserSuspension,
    Vehicle,
    VoiceAgentConfig,
    VoiceCallCooldown,
    VoiceCallLog,
    VoiceCallStatus,
    VoiceLanguageTemplate,
    utcnow,
)
from app.services.alert_store import as_uuid, dialect_insert


class VoiceCallStore:
    def is_suspended(self, db: Session, user_id: str) -> bool:
        row = db.query(UserSuspension.id).filter(UserSuspension.user_id == as_uuid(user_id)).first()
        return row is not None

    def get_profile(self, db: Session, user_id: str) -> Optional[Profile]:
        return db.query(Profile).filter(Profile.id == as_uuid(user_id)).first()

    def get_cooldown(self, db: Session, user_id: str, vehicle_id: str, document_type: str) -> Optional[VoiceCallCooldown]:
        return (
            db.query(VoiceCallCooldown)
            .filter(
                VoiceCallCooldown.user_id == as_uuid(user_id),
                VoiceCallCooldown.vehicle_id == as_uuid(vehicle_id),
                VoiceCallCooldown.document_type == document_type,
            )
            .first()
        )

    def count_calls_since(self, db: Session, user_id: str, since: datetime) -> int:
        """Calls that count toward the daily ceiling: everything except failures."""
        count = (
            db.query(func.count(VoiceCallLog.id))
            .filter(
                VoiceCallLog.user_id == as_uuid(user_id),
                VoiceCallLog.created_at >= since,
                VoiceCallLog.status != VoiceCallStatus.failed.value,
            )
            .scalar()
        )
        return int(count or 0)

    def get_vehicle(self, db: Session, vehicle_id: str) -> Optional[Vehicle]:
        return db.query(Vehicle).filter(Vehicle.id == as_uuid(vehicle_id)).first()

    def get_active_agent(self, db: Session) -> Optional[VoiceAgentConfig]:
        return (
            db.query(VoiceAgentConfig)
            .filter(VoiceAgentConfig.is_active.is_(True))
            .order_by(VoiceAgentConfig.updated_at.desc())
            .first()
        )

    def get_language_template(self, db: Session, language_code: str) -> Optional[VoiceLanguageTemplate]:
        return (
            db.query(VoiceLanguageTemplate)
            .filter(
                VoiceLanguageTemplate.language_code == language_code,
                VoiceLanguageTemplate.is_active.is_(True),
            )
            .first()
        )

    def append_call_log(
        self,
        db: Session,
        user_id: str,
        vehicle_id: str,
        document_type: str,
        status: str,
        language: str,
        call_id: Optional[str] = None,
    ) -> VoiceCallLog:
        row = VoiceCallLog(
            user_id=as_uuid(user_id),
            vehicle_id=as_uuid(vehicle_id),
            call_type="expiry_reminder",
            document_type=document_type,
            bolna_call_id=call_id or None,
            status=status,
            language_used=language,
        )
        db.add(row)
        return row

    def upsert_cooldown(
        self,
        db: Session,
        user_id: str,
        vehicle_id: str,
        document_type: str,
        now: Optional[datetime] = None,
    ) -> None:
        """Insert the cooldown row, or refresh it and bump call_count."""
        table = VoiceCallCooldown.__table__
        now = now or utcnow()
        stmt = dialect_insert(db, table).values(
            id=uuid.uuid4(),
            user_id=as_uuid(user_id),
            vehicle_id=as_uuid(vehicle_id),
            document_type=document_type,
            last_call_at=now,
            call_count=1,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.vehicle_id, table.c.document_type],
            set_={
                "last_call_at": stmt.excluded.last_call_at,
                "call_count": table.c.call_count + 1,
            },
        )
        db.execute(stmt)

    def get_call_by_vendor_id(self, db: Session, call_id: str) -> Optional[VoiceCallLog]:
        return db.query(VoiceCallLog).filter(VoiceCallLog.bolna_call_id == call_id).first()

    def update_call(self, db: Session, call_id: str, values: dict[str, Any]) -> int:
        updated = (
            db.query(VoiceCallLog)
            .filter(VoiceCallLog.bolna_call_id == call_id)
            .update(values, synchronize_session=False)
        )
        return int(updated or 0)


voice_call_store = VoiceCallStore()
