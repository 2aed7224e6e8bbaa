import json
import uuid
from datetime import date, timedelta

import httpx
import pytest

from app.core.config import AlertRunConfig
from app.db import models
from app.services.alert_store import AlertStore
from app.services.alerts.dispatcher import NotificationDispatcher
from app.services.alerts.email_renderer import AlertEmailRenderer
from app.services.alerts.rules import VehicleFacts, evaluate_documents
from app.services.mail_service import MailService

TODAY = date(2025, 3, 10)


def _resend_config():
    return AlertRunConfig(
        ai_enabled=False,
        mail_provider="resend",
        resend_api_key="re_test",
        mail_from="alerts@vindoc.app",
        mail_timeout_seconds=2.0,
    )


def _dispatcher(handler):
    mailer = MailService(_resend_config(), transport=httpx.MockTransport(handler))
    return NotificationDispatcher(AlertStore(), mailer, AlertEmailRenderer("https://vindoc.app"))


def _alerts_for(vehicle):
    return evaluate_documents(VehicleFacts.from_row(vehicle), TODAY)


@pytest.mark.asyncio
async def test_send_failure_writes_no_log_rows(db_session, make_user, make_vehicle):
    user = make_user()
    vehicle = make_vehicle(
        user,
        insurance_expiry=TODAY + timedelta(days=3),
        pucc_valid_upto=TODAY - timedelta(days=1),
    )
    dispatcher = _dispatcher(lambda request: httpx.Response(500, json={"message": "down"}))

    batches, skipped = dispatcher.resolve_recipients(db_session, _alerts_for(vehicle))
    report = await dispatcher.dispatch(db_session, batches)

    assert skipped == []
    assert report.emails_sent == 0
    assert report.notifications_logged == 0
    assert [s["reason"] for s in report.skipped] == ["send_failed"]
    assert db_session.query(models.ExpiryNotification).count() == 0
    assert db_session.query(models.VehicleHistory).count() == 0


@pytest.mark.asyncio
async def test_successful_send_logs_then_audits(db_session, make_user, make_vehicle):
    user = make_user(email="anu@example.com")
    vehicle = make_vehicle(
        user,
        insurance_expiry=TODAY + timedelta(days=3),
        road_tax_valid_upto=TODAY + timedelta(days=25),
    )
    sent = []

    def handler(request):
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "msg_1"})

    dispatcher = _dispatcher(handler)
    batches, _ = dispatcher.resolve_recipients(db_session, _alerts_for(vehicle))
    report = await dispatcher.dispatch(db_session, batches)

    assert len(sent) == 1
    assert sent[0]["to"] == ["anu@example.com"]
    assert sent[0]["subject"] == "1 item(s) due within 7 days - action needed"
    assert "KL07AB1234" in sent[0]["html"]
    assert report.emails_sent == 1
    assert report.notifications_logged == 2
    assert report.history_logged == 2

    keys = {(n.alert_type, n.bucket) for n in db_session.query(models.ExpiryNotification).all()}
    assert keys == {("insurance", "7_day"), ("road_tax", "30_day")}

    history = db_session.query(models.VehicleHistory).order_by(models.VehicleHistory.event_description).all()
    assert [h.event_type for h in history] == ["expiry_alert", "expiry_alert"]
    assert [h.event_description for h in history] == [
        "30 day alert sent for Road Tax",
        "7 day alert sent for Insurance",
    ]
    assert history[1].event_metadata["days_until_expiry"] == 3


@pytest.mark.asyncio
async def test_recipient_without_email_is_skipped(db_session, make_user, make_vehicle):
    user = make_user(email=None)
    vehicle = make_vehicle(user, insurance_expiry=TODAY)
    dispatcher = _dispatcher(lambda request: httpx.Response(200, json={"id": "x"}))

    batches, skipped = dispatcher.resolve_recipients(db_session, _alerts_for(vehicle))

    assert batches == []
    assert skipped == [{"scope": "recipient", "id": str(user.id), "reason": "no_email"}]


@pytest.mark.asyncio
async def test_one_failing_recipient_does_not_stop_others(db_session, make_user, make_vehicle):
    bad = make_user(email="bad@example.com")
    good = make_user(email="good@example.com")
    make_vehicle(bad, registration_number="KL01AA0001", insurance_expiry=TODAY)
    make_vehicle(good, registration_number="KL01AA0002", insurance_expiry=TODAY)

    def handler(request):
        if json.loads(request.content)["to"] == ["bad@example.com"]:
            return httpx.Response(422, json={"message": "invalid recipient"})
        return httpx.Response(200, json={"id": "ok"})

    dispatcher = _dispatcher(handler)
    alerts = []
    for vehicle in db_session.query(models.Vehicle).all():
        alerts.extend(_alerts_for(vehicle))
    batches, _ = dispatcher.resolve_recipients(db_session, alerts)
    report = await dispatcher.dispatch(db_session, batches)

    assert report.emails_sent == 1
    assert report.notifications_logged == 1
    logged = db_session.query(models.ExpiryNotification).one()
    assert logged.user_id == good.id


@pytest.mark.asyncio
async def test_conflicting_log_row_counts_as_already_logged(db_session, make_user, make_vehicle):
    user = make_user()
    vehicle = make_vehicle(user, insurance_expiry=TODAY + timedelta(days=3), pucc_valid_upto=TODAY)
    # Another writer logged the insurance alert between dedup and dispatch.
    db_session.add(
        models.ExpiryNotification(
            id=uuid.uuid4(),
            vehicle_id=vehicle.id,
            user_id=user.id,
            alert_type="insurance",
            bucket="7_day",
        )
    )
    db_session.commit()

    dispatcher = _dispatcher(lambda request: httpx.Response(200, json={"id": "x"}))
    batches, _ = dispatcher.resolve_recipients(db_session, _alerts_for(vehicle))
    report = await dispatcher.dispatch(db_session, batches)

    assert report.notifications_logged == 1
    assert report.already_logged == 1
    assert report.history_logged == 1
    assert db_session.query(models.ExpiryNotification).count() == 2
