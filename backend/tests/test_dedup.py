from datetime import date, timedelta

from app.services.alerts.dedup import filter_new_alerts
from app.services.alerts.rules import VehicleFacts, evaluate_documents

TODAY = date(2025, 3, 10)


def _alerts(days):
    vehicle = VehicleFacts(
        id="V1",
        user_id="U1",
        registration_number="KL07AB1234",
        insurance_expiry=TODAY + timedelta(days=days),
    )
    return evaluate_documents(vehicle, TODAY)


def test_second_pass_over_same_output_is_empty():
    alerts = _alerts(5) + _alerts(20)

    first = filter_new_alerts(alerts, set())
    log = {a.natural_key for a in first}
    second = filter_new_alerts(alerts, log)

    assert len(first) == 2
    assert second == []


def test_same_bucket_is_suppressed_but_new_bucket_passes():
    log = {("V1", "insurance", "7_day")}

    assert filter_new_alerts(_alerts(3), log) == []

    expired = filter_new_alerts(_alerts(0), log)
    assert [a.natural_key for a in expired] == [("V1", "insurance", "expired")]


def test_duplicates_within_one_batch_collapse():
    alerts = _alerts(3) + _alerts(4)

    fresh = filter_new_alerts(alerts, set())

    assert len(fresh) == 1
    assert fresh[0].days_until == 3
