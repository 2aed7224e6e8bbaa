import os
import uuid
from datetime import date

# Settings are read at import time; these must be in place first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AI_ENRICHMENT_ENABLED", "false")
os.environ.setdefault("MAIL_PROVIDER", "dev")
os.environ.setdefault("VOICE_PROVIDER", "dev")
os.environ.setdefault("WORKER_TOKEN", "test-worker-token")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import AlertRunConfig
from app.db import models
from app.db.database import Base


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def db_session(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def config():
    return AlertRunConfig(
        alert_sources=("documents", "services", "lifespan"),
        ai_enabled=False,
        mail_provider="dev",
        voice_provider="dev",
    )


@pytest.fixture
def make_user(db_session):
    def _make(email="owner@example.com", phone=None, voice_enabled=True, language="en"):
        user = models.User(id=uuid.uuid4(), email=email, full_name="Test Owner")
        db_session.add(user)
        if phone is not None:
            db_session.add(
                models.Profile(
                    id=user.id,
                    phone_number=phone,
                    voice_reminders_enabled=voice_enabled,
                    preferred_language=language,
                )
            )
        db_session.commit()
        return user

    return _make


@pytest.fixture
def make_vehicle(db_session):
    def _make(user, **fields):
        values = {
            "registration_number": "KL07AB1234",
            "owner_name": "Anu Thomas",
            "maker_model": "Maruti Swift",
            "vehicle_class": "LMV",
            "fuel_type": "ELECTRIC",
            "registration_date": date(2022, 1, 15),
        }
        values.update(fields)
        vehicle = models.Vehicle(id=uuid.uuid4(), user_id=user.id, **values)
        db_session.add(vehicle)
        db_session.commit()
        return vehicle

    return _make
