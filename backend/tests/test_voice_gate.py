import json
import uuid
from datetime import timedelta

import httpx
import pytest

from app.core.config import AlertRunConfig
from app.db import models
from app.db.models import utcnow
from app.services.voice.bolna_client import BolnaClient
from app.services.voice.call_gate import VoiceCallGate, VoiceCallRequest, normalize_indian_phone


class FakeBolna:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = body if body is not None else {"call_id": "call-1"}
        self.requests = []

    def __call__(self, request):
        self.requests.append(json.loads(request.content))
        return httpx.Response(self.status_code, json=self.body)


def _config(**overrides):
    values = dict(
        voice_provider="bolna",
        bolna_api_key="bn_test",
        bolna_api_base="https://api.bolna.test",
        voice_max_calls_per_day=2,
        voice_cooldown_hours=24,
    )
    values.update(overrides)
    return AlertRunConfig(**values)


def _gate(vendor, clock=utcnow, **overrides):
    config = _config(**overrides)
    client = BolnaClient(config, transport=httpx.MockTransport(vendor))
    return VoiceCallGate(config, client=client, clock=clock)


@pytest.fixture
def setup(db_session, make_user, make_vehicle):
    def _setup(phone="+919876543210", voice_enabled=True, language="en", agent=True):
        user = make_user(phone=phone, voice_enabled=voice_enabled, language=language)
        vehicle = make_vehicle(user)
        if agent:
            db_session.add(models.VoiceAgentConfig(id=uuid.uuid4(), bolna_agent_id="agent-1", is_active=True))
        db_session.add(
            models.VoiceLanguageTemplate(
                id=uuid.uuid4(),
                language_code="en",
                language_name="English",
                system_prompt="Remind {{owner_name}} that {{document_type}} {{days_message}}.",
                welcome_message="Hi {{owner_name}}, your {{vehicle_number}} {{document_type}} {{days_message}}.",
                language_instruction="Speak in English.",
            )
        )
        db_session.commit()
        return user, vehicle

    return _setup


def _request(user, vehicle, document_type="insurance", days=5, **extra):
    return VoiceCallRequest(
        user_id=str(user.id),
        vehicle_id=str(vehicle.id),
        document_type=document_type,
        days_until_expiry=days,
        **extra,
    )


@pytest.mark.asyncio
async def test_dispatch_logs_call_and_starts_cooldown(db_session, setup):
    user, vehicle = setup()
    vendor = FakeBolna()

    result = await _gate(vendor).request_call(db_session, _request(user, vehicle))

    assert result.status == "dispatched"
    assert result.call_id == "call-1"
    assert result.phone_number == "+91987****"
    assert result.language == "en"
    sent = vendor.requests[0]
    assert sent["agent_id"] == "agent-1"
    assert sent["recipient_phone_number"] == "+919876543210"
    assert sent["from_phone_number"] == "+918035452070"
    assert sent["user_data"]["welcome_message"] == "Hi Anu Thomas, your KL07AB1234 Insurance will expire in 5 days."
    assert sent["agent_prompt"] == "Remind Anu Thomas that Insurance will expire in 5 days."

    log = db_session.query(models.VoiceCallLog).one()
    assert (log.status, log.bolna_call_id, log.language_used) == ("initiated", "call-1", "en")
    cooldown = db_session.query(models.VoiceCallCooldown).one()
    assert cooldown.call_count == 1


@pytest.mark.asyncio
async def test_second_attempt_within_cooldown_is_skipped(db_session, setup):
    user, vehicle = setup()
    vendor = FakeBolna()
    gate = _gate(vendor)

    await gate.request_call(db_session, _request(user, vehicle))
    second = await gate.request_call(db_session, _request(user, vehicle))

    assert second.status == "skipped"
    assert second.reason == "cooldown_active"
    assert second.hours_remaining == 24
    assert len(vendor.requests) == 1
    assert db_session.query(models.VoiceCallLog).count() == 1


@pytest.mark.asyncio
async def test_cooldown_expires_and_upsert_bumps_call_count(db_session, setup):
    user, vehicle = setup()
    start = utcnow()

    await _gate(FakeBolna(), clock=lambda: start).request_call(db_session, _request(user, vehicle))
    later = await _gate(FakeBolna(body={"id": "call-2"}), clock=lambda: start + timedelta(hours=25)).request_call(
        db_session, _request(user, vehicle)
    )

    assert later.status == "dispatched"
    assert later.call_id == "call-2"
    db_session.expire_all()
    cooldown = db_session.query(models.VoiceCallCooldown).one()
    assert cooldown.call_count == 2


@pytest.mark.asyncio
async def test_daily_ceiling_blocks_third_call(db_session, setup):
    user, vehicle = setup()
    for doc in ("pucc", "fitness"):
        db_session.add(models.VoiceCallLog(user_id=user.id, vehicle_id=vehicle.id, document_type=doc, status="completed"))
    db_session.commit()
    vendor = FakeBolna()

    result = await _gate(vendor).request_call(db_session, _request(user, vehicle, "road_tax"))

    assert result.status == "skipped"
    assert result.reason == "daily_limit_reached"
    assert vendor.requests == []


@pytest.mark.asyncio
async def test_failed_calls_do_not_count_toward_ceiling(db_session, setup):
    user, vehicle = setup()
    for doc in ("pucc", "fitness"):
        db_session.add(models.VoiceCallLog(user_id=user.id, vehicle_id=vehicle.id, document_type=doc, status="failed"))
    db_session.commit()

    result = await _gate(FakeBolna()).request_call(db_session, _request(user, vehicle, "road_tax"))

    assert result.status == "dispatched"


@pytest.mark.asyncio
async def test_vendor_failure_logs_failed_call_and_allows_retry(db_session, setup):
    user, vehicle = setup()

    failed = await _gate(FakeBolna(status_code=503, body={"error": "busy"})).request_call(
        db_session, _request(user, vehicle)
    )

    assert failed.status == "failed"
    assert failed.reason == "vendor_error"
    assert db_session.query(models.VoiceCallLog).one().status == "failed"
    assert db_session.query(models.VoiceCallCooldown).count() == 0

    retry = await _gate(FakeBolna()).request_call(db_session, _request(user, vehicle))

    assert retry.status == "dispatched"


@pytest.mark.asyncio
async def test_preferred_language_without_template_falls_back(db_session, setup):
    user, vehicle = setup(language="ta")
    vendor = FakeBolna()

    result = await _gate(vendor).request_call(db_session, _request(user, vehicle, days=3))

    assert result.language == "ta"
    user_data = vendor.requests[0]["user_data"]
    assert user_data["days_message"] == "3 naal la expire aagum"
    assert user_data["welcome_message"] == "Hi Anu Thomas, your KL07AB1234 Insurance 3 naal la expire aagum."
    assert user_data["language_instruction"] == "Speak in English."


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs, reason",
    [
        (dict(phone=""), "no_phone_number"),
        (dict(phone="+91 12345"), "invalid_phone_number"),
        (dict(voice_enabled=False), "voice_reminders_disabled"),
        (dict(agent=False), "no_voice_agent"),
    ],
)
async def test_preconditions_skip_with_reason(db_session, setup, kwargs, reason):
    user, vehicle = setup(**kwargs)
    vendor = FakeBolna()

    result = await _gate(vendor).request_call(db_session, _request(user, vehicle))

    assert result.status == "skipped"
    assert result.reason == reason
    assert vendor.requests == []
    assert db_session.query(models.VoiceCallLog).count() == 0


@pytest.mark.asyncio
async def test_suspension_is_checked_first(db_session, setup):
    user, vehicle = setup(phone="bad")
    db_session.add(models.UserSuspension(user_id=user.id, reason="abuse"))
    db_session.commit()

    result = await _gate(FakeBolna()).request_call(db_session, _request(user, vehicle))

    assert result.reason == "user_suspended"


@pytest.mark.asyncio
async def test_unknown_vehicle_is_skipped(db_session, setup):
    user, _ = setup()
    ghost = models.Vehicle(id=uuid.uuid4(), user_id=user.id, registration_number="X")

    result = await _gate(FakeBolna()).request_call(db_session, _request(user, ghost))

    assert result.reason == "vehicle_not_found"


def test_normalize_indian_phone():
    assert normalize_indian_phone("+919876543210") == "9876543210"
    assert normalize_indian_phone("98765 43210") == "9876543210"
    assert normalize_indian_phone("+91 98765") is None
    assert normalize_indian_phone(None) is None
