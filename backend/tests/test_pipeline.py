import json
import uuid
from datetime import date, timedelta
from types import SimpleNamespace

import httpx
import pytest

from app.core.config import AlertRunConfig
from app.db import models
from app.services.alert_store import AlertStore
from app.services.alerts.pipeline import ExpiryAlertPipeline
from app.services.mail_service import MailService
from app.utils.exceptions import ConfigurationError, PersistenceUnavailableError

TODAY = date(2025, 3, 10)


class RecordingMail:
    """httpx handler that records every send and answers 200."""

    def __init__(self):
        self.sent = []

    def __call__(self, request):
        self.sent.append(json.loads(request.content))
        return httpx.Response(200, json={"id": f"msg_{len(self.sent)}"})


def _config(**overrides):
    values = dict(
        ai_enabled=False,
        mail_provider="resend",
        resend_api_key="re_test",
        mail_from="alerts@vindoc.app",
    )
    values.update(overrides)
    return AlertRunConfig(**values)


def _pipeline(config, mail, store=None):
    mailer = MailService(config, transport=httpx.MockTransport(mail))
    return ExpiryAlertPipeline(config, store=store, mailer=mailer)


@pytest.mark.asyncio
async def test_full_run_then_rerun_sends_nothing(db_session, make_user, make_vehicle):
    user = make_user(email="anu@example.com")
    vehicle = make_vehicle(
        user,
        fuel_type="DIESEL",
        registration_date=date(2016, 4, 1),
        insurance_expiry=TODAY + timedelta(days=5),
        pucc_valid_upto=TODAY + timedelta(days=90),
    )
    db_session.add(
        models.ServiceRecord(
            vehicle_id=vehicle.id,
            user_id=user.id,
            service_date=TODAY - timedelta(days=170),
            service_type="General",
            next_service_due_date=TODAY + timedelta(days=12),
        )
    )
    db_session.commit()
    mail = RecordingMail()
    pipeline = _pipeline(_config(), mail)

    first = await pipeline.run(db_session, today=TODAY)

    assert first.evaluated == 1
    assert first.candidates == 3  # insurance 7_day, service 30_day, lifespan approaching
    assert first.new_alerts == 3
    assert first.recipients == 1
    assert first.emails_sent == 1
    assert first.notifications_logged == 3
    assert first.history_logged == 3
    assert len(mail.sent) == 1
    html = mail.sent[0]["html"]
    assert "Insurance" in html and "General service" in html and "Vehicle lifespan" in html

    second = await pipeline.run(db_session, today=TODAY)

    assert second.candidates == 3
    assert second.new_alerts == 0
    assert second.emails_sent == 0
    assert len(mail.sent) == 1
    assert db_session.query(models.ExpiryNotification).count() == 3


@pytest.mark.asyncio
async def test_bucket_transition_is_announced_again(db_session, make_user, make_vehicle):
    user = make_user()
    make_vehicle(user, insurance_expiry=TODAY + timedelta(days=20))
    mail = RecordingMail()
    pipeline = _pipeline(_config(alert_sources=("documents",)), mail)

    await pipeline.run(db_session, today=TODAY)
    later = await pipeline.run(db_session, today=TODAY + timedelta(days=14))
    expired = await pipeline.run(db_session, today=TODAY + timedelta(days=21))

    assert later.new_alerts == 1
    assert expired.new_alerts == 1
    buckets = sorted(n.bucket for n in db_session.query(models.ExpiryNotification).all())
    assert buckets == ["30_day", "7_day", "expired"]
    assert mail.sent[2]["subject"].startswith("1 item(s) expired or overdue")


@pytest.mark.asyncio
async def test_dry_run_sends_and_writes_nothing(db_session, make_user, make_vehicle):
    user = make_user()
    make_vehicle(user, insurance_expiry=TODAY)
    mail = RecordingMail()

    summary = await _pipeline(_config(), mail).run(db_session, today=TODAY, dry_run=True)

    assert summary.dry_run is True
    assert summary.new_alerts == 1
    assert summary.recipients == 1
    assert summary.emails_sent == 0
    assert mail.sent == []
    assert db_session.query(models.ExpiryNotification).count() == 0


@pytest.mark.asyncio
async def test_log_read_failure_aborts_before_any_send(db_session, make_user, make_vehicle):
    class BrokenLogStore(AlertStore):
        def fetch_notified_keys(self, db, vehicle_ids):
            raise PersistenceUnavailableError("log offline")

    user = make_user()
    make_vehicle(user, insurance_expiry=TODAY)
    mail = RecordingMail()

    with pytest.raises(PersistenceUnavailableError):
        await _pipeline(_config(), mail, store=BrokenLogStore()).run(db_session, today=TODAY)

    assert mail.sent == []


@pytest.mark.asyncio
async def test_missing_mail_credentials_abort_the_run(db_session, make_user, make_vehicle):
    user = make_user()
    make_vehicle(user, insurance_expiry=TODAY)
    mail = RecordingMail()

    with pytest.raises(ConfigurationError):
        await _pipeline(_config(resend_api_key=""), mail).run(db_session, today=TODAY)

    assert mail.sent == []


def test_unknown_alert_source_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        ExpiryAlertPipeline(_config(alert_sources=("documents", "challans")))


@pytest.mark.asyncio
async def test_voice_settings_do_not_block_email_only_runs(db_session, make_user, make_vehicle):
    user = make_user()
    make_vehicle(user, insurance_expiry=TODAY)
    mail = RecordingMail()
    config = _config(voice_provider="bolna", bolna_api_key="")

    summary = await _pipeline(config, mail).run(db_session, today=TODAY)

    assert summary.emails_sent == 1
    with pytest.raises(ConfigurationError):
        await _pipeline(_config(voice_provider="bolna", bolna_api_key="", voice_fanout_enabled=True), mail).run(
            db_session, today=TODAY
        )
    assert len(mail.sent) == 1


@pytest.mark.asyncio
async def test_voice_fanout_calls_for_urgent_documents_only(db_session, make_user, make_vehicle):
    user = make_user(phone="+919876543210")
    make_vehicle(
        user,
        insurance_expiry=TODAY + timedelta(days=2),
        road_tax_valid_upto=TODAY + timedelta(days=25),
    )
    db_session.add(models.VoiceAgentConfig(id=uuid.uuid4(), bolna_agent_id="agent-1", is_active=True))
    db_session.commit()
    mail = RecordingMail()

    summary = await _pipeline(_config(voice_fanout_enabled=True, voice_provider="dev"), mail).run(
        db_session, today=TODAY
    )

    assert summary.emails_sent == 1
    assert summary.voice_calls == 1
    call = db_session.query(models.VoiceCallLog).one()
    assert call.document_type == "insurance"
    assert call.status == "initiated"


@pytest.mark.asyncio
async def test_unparseable_rows_are_skipped_and_the_rest_still_sent(db_session, make_user, make_vehicle):
    user = make_user()
    good = make_vehicle(user, insurance_expiry=TODAY + timedelta(days=5))
    bad_vehicle = SimpleNamespace(
        id=uuid.uuid4(),
        user_id=user.id,
        registration_number="KL01ZZ0001",
        maker_model=None,
        vehicle_class=None,
        fuel_type="PETROL",
        registration_date=None,
        owner_name=None,
        insurance_expiry="next tuesday",
        pucc_valid_upto=None,
        fitness_valid_upto=None,
        road_tax_valid_upto=None,
    )
    bad_service = SimpleNamespace(
        id=uuid.uuid4(),
        vehicle_id=good.id,
        service_type="General",
        next_service_due_date="31/02/2025",
        next_service_due_km=None,
    )

    class StoreWithBadRows(AlertStore):
        def fetch_vehicles(self, db):
            return [bad_vehicle, *super().fetch_vehicles(db)]

        def fetch_services_due(self, db):
            return [bad_service, *super().fetch_services_due(db)]

    mail = RecordingMail()
    config = _config(alert_sources=("documents", "services"))

    summary = await _pipeline(config, mail, store=StoreWithBadRows()).run(db_session, today=TODAY)

    assert {"scope": "vehicle", "id": str(bad_vehicle.id), "reason": "invalid_data"} in summary.skipped
    assert {"scope": "service", "id": str(bad_service.id), "reason": "invalid_data"} in summary.skipped
    assert summary.evaluated == 1
    assert summary.emails_sent == 1
    assert summary.notifications_logged == 1
    logged = db_session.query(models.ExpiryNotification).one()
    assert (str(logged.vehicle_id), logged.alert_type, logged.bucket) == (str(good.id), "insurance", "7_day")
