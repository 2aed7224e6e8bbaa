"""
SQLAlchemy ORM Models (source of truth: supabase/migrations)
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TIMESTAMP,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from app.db.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the TIMESTAMP columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================================
# Enums
# ============================================================================

class DocumentType(str, enum.Enum):
    """Vehicle documents that carry an expiry date"""
    insurance = "insurance"
    pucc = "pucc"
    fitness = "fitness"
    road_tax = "road_tax"


class VoiceCallStatus(str, enum.Enum):
    """Voice call lifecycle as reported by the vendor webhook"""
    initiated = "initiated"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"
    no_answer = "no_answer"
    busy = "busy"


# ============================================================================
# Users
# ============================================================================

class User(Base):
    """Account identity; the email is the alert recipient address"""
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=True, index=True)
    full_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)

    profile = relationship("Profile", back_populates="user", uselist=False, cascade="all, delete-orphan")
    vehicles = relationship("Vehicle", back_populates="owner")


class Profile(Base):
    """Contact preferences for the voice channel"""
    __tablename__ = "profiles"

    id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    phone_number = Column(String(20), nullable=True)
    phone_verified = Column(Boolean, nullable=False, default=False)
    voice_reminders_enabled = Column(Boolean, nullable=False, default=True)
    preferred_language = Column(String(10), nullable=False, default="en")
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="profile")


class UserSuspension(Base):
    __tablename__ = "user_suspensions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    suspended_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    suspended_by = Column(Uuid, nullable=True)
    reason = Column(Text, nullable=True)


# ============================================================================
# Vehicles
# ============================================================================

class Vehicle(Base):
    """Registered vehicle with its four document expiry dates"""
    __tablename__ = "vehicles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    registration_number = Column(String(20), nullable=False, index=True)
    owner_name = Column(String(255), nullable=True)
    maker_model = Column(String(255), nullable=True)
    vehicle_class = Column(String(100), nullable=True)
    fuel_type = Column(String(50), nullable=True)
    registration_date = Column(Date, nullable=True)

    insurance_expiry = Column(Date, nullable=True)
    pucc_valid_upto = Column(Date, nullable=True)
    fitness_valid_upto = Column(Date, nullable=True)
    road_tax_valid_upto = Column(Date, nullable=True)

    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow, onupdate=utcnow)

    owner = relationship("User", back_populates="vehicles")
    service_records = relationship("ServiceRecord", back_populates="vehicle", cascade="all, delete-orphan")


class ServiceRecord(Base):
    __tablename__ = "service_records"
    __table_args__ = (Index("ix_service_records_next_due", "next_service_due_date"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    vehicle_id = Column(Uuid, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, nullable=False)
    service_date = Column(Date, nullable=False)
    service_type = Column(String(100), nullable=False)
    odometer_reading = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)
    cost = Column(Numeric(10, 2), nullable=True)
    service_center = Column(String(255), nullable=True)
    next_service_due_date = Column(Date, nullable=True)
    next_service_due_km = Column(Integer, nullable=True)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow, onupdate=utcnow)

    vehicle = relationship("Vehicle", back_populates="service_records")


class VehicleHistory(Base):
    """Append-only audit trail shown on the vehicle timeline"""
    __tablename__ = "vehicle_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    vehicle_id = Column(Uuid, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, nullable=False)
    event_type = Column(String(50), nullable=False)
    event_description = Column(Text, nullable=False)
    event_metadata = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)


# ============================================================================
# Expiry alerts
# ============================================================================

class ExpiryNotification(Base):
    """
    One row per announced (vehicle, alert type, bucket) transition.

    alert_type is a document type, ``service_<record id>`` or ``lifespan``;
    the unique constraint is what makes a repeat announcement impossible.
    """
    __tablename__ = "expiry_notifications"
    __table_args__ = (
        UniqueConstraint("vehicle_id", "alert_type", "bucket", name="uq_expiry_notifications_key"),
        Index("ix_expiry_notifications_user", "user_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    vehicle_id = Column(Uuid, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid, nullable=False)
    alert_type = Column(String(64), nullable=False)
    bucket = Column(String(20), nullable=False)
    ai_content = Column(JSONType, nullable=True)
    sent_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)


# ============================================================================
# Voice reminders
# ============================================================================

class VoiceAgentConfig(Base):
    __tablename__ = "voice_agent_config"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    bolna_agent_id = Column(String(120), nullable=True)
    agent_name = Column(String(255), nullable=False, default="VinDoc Reminder")
    language = Column(String(10), nullable=False, default="hi")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow, onupdate=utcnow)


class VoiceLanguageTemplate(Base):
    __tablename__ = "voice_language_templates"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    language_code = Column(String(10), unique=True, nullable=False)
    language_name = Column(String(50), nullable=False)
    system_prompt = Column(Text, nullable=False)
    welcome_message = Column(Text, nullable=False)
    language_instruction = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow, onupdate=utcnow)


class VoiceCallCooldown(Base):
    __tablename__ = "voice_call_cooldowns"
    __table_args__ = (
        UniqueConstraint("user_id", "vehicle_id", "document_type", name="uq_voice_call_cooldowns_key"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False)
    vehicle_id = Column(Uuid, nullable=False)
    document_type = Column(String(64), nullable=False)
    last_call_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    call_count = Column(Integer, nullable=False, default=1)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)


class VoiceCallLog(Base):
    """Every call attempt, failures included"""
    __tablename__ = "voice_call_logs"
    __table_args__ = (
        Index("ix_voice_call_logs_user_created", "user_id", "created_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    vehicle_id = Column(Uuid, nullable=True)
    call_type = Column(String(50), nullable=False, default="expiry_reminder")
    document_type = Column(String(64), nullable=True)
    bolna_call_id = Column(String(120), nullable=True, index=True)
    status = Column(String(20), nullable=False, default=VoiceCallStatus.initiated.value)
    language_used = Column(String(10), nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    transcript = Column(Text, nullable=True)
    recording_url = Column(Text, nullable=True)
    hangup_reason = Column(String(255), nullable=True)
    created_at = Column(TIMESTAMP, nullable=False, default=utcnow)
    updated_at = Column(TIMESTAMP, nullable=False, default=utcnow, onupdate=utcnow)
