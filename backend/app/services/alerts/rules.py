"""
Due-date bucketing for vehicle documents and service reminders.

A date produces at most one alert per pass:

    days_until <= 0        -> expired (documents) / overdue (services)
    0 < days_until <= 7    -> 7_day
    7 < days_until <= 30   -> 30_day
    days_until > 30        -> no alert

Upper bounds are inclusive so the windows are contiguous: a record that
crosses a threshold between two runs is always picked up by the next one.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional
from uuid import UUID

from app.utils.exceptions import InvalidAlertInput

BUCKET_30_DAY = "30_day"
BUCKET_7_DAY = "7_day"
BUCKET_EXPIRED = "expired"
BUCKET_OVERDUE = "overdue"
BUCKET_APPROACHING = "approaching"
BUCKET_EXCEEDED = "exceeded"

KIND_DOCUMENT = "document"
KIND_SERVICE = "service"
KIND_LIFESPAN = "lifespan"

DOCUMENT_FIELDS = (
    ("insurance", "insurance_expiry"),
    ("pucc", "pucc_valid_upto"),
    ("fitness", "fitness_valid_upto"),
    ("road_tax", "road_tax_valid_upto"),
)

DOCUMENT_LABELS = {
    "insurance": "Insurance",
    "pucc": "PUCC (Pollution Certificate)",
    "fitness": "Fitness Certificate",
    "road_tax": "Road Tax",
}

_SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class VehicleFacts:
    """The slice of a vehicle row the evaluators look at."""
    id: str
    user_id: str
    registration_number: str
    maker_model: Optional[str] = None
    vehicle_class: Optional[str] = None
    fuel_type: Optional[str] = None
    registration_date: Optional[date] = None
    owner_name: Optional[str] = None
    insurance_expiry: Optional[date] = None
    pucc_valid_upto: Optional[date] = None
    fitness_valid_upto: Optional[date] = None
    road_tax_valid_upto: Optional[date] = None

    @property
    def display_name(self) -> str:
        return self.maker_model or self.registration_number

    @classmethod
    def from_row(cls, row: Any) -> "VehicleFacts":
        return cls(
            id=str(row.id),
            user_id=str(row.user_id),
            registration_number=row.registration_number,
            maker_model=row.maker_model,
            vehicle_class=row.vehicle_class,
            fuel_type=row.fuel_type,
            registration_date=coerce_date(row.registration_date, "registration_date"),
            owner_name=getattr(row, "owner_name", None),
            insurance_expiry=coerce_date(row.insurance_expiry, "insurance_expiry"),
            pucc_valid_upto=coerce_date(row.pucc_valid_upto, "pucc_valid_upto"),
            fitness_valid_upto=coerce_date(row.fitness_valid_upto, "fitness_valid_upto"),
            road_tax_valid_upto=coerce_date(row.road_tax_valid_upto, "road_tax_valid_upto"),
        )


@dataclass(frozen=True)
class ServiceDue:
    id: str
    vehicle_id: str
    service_type: str
    next_service_due_date: Optional[date]
    next_service_due_km: Optional[int] = None

    @classmethod
    def from_row(cls, row: Any) -> "ServiceDue":
        return cls(
            id=str(row.id),
            vehicle_id=str(row.vehicle_id),
            service_type=row.service_type,
            next_service_due_date=coerce_date(row.next_service_due_date, "next_service_due_date"),
            next_service_due_km=row.next_service_due_km,
        )


@dataclass
class AlertItem:
    """
    One pending notification. Produced by an evaluator, filtered by the
    dedup step, given advice by the enricher and consumed by the dispatcher.
    """
    kind: str
    vehicle: VehicleFacts
    alert_type: str
    bucket: str
    label: str
    due_date: Optional[date] = None
    days_until: Optional[int] = None
    service_id: Optional[str] = None
    service_type: Optional[str] = None
    vehicle_age: Optional[int] = None
    max_lifespan: Optional[int] = None
    years_remaining: Optional[int] = None
    advice: Optional[dict[str, Any]] = None
    advice_source: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> str:
        return self.vehicle.user_id

    @property
    def vehicle_id(self) -> str:
        return self.vehicle.id

    @property
    def natural_key(self) -> tuple[str, str, str]:
        return (self.vehicle.id, self.alert_type, self.bucket)

    def history_metadata(self) -> dict[str, Any]:
        meta: dict[str, Any] = {
            "document_type": self.alert_type,
            "notification_type": self.bucket,
        }
        if self.days_until is not None:
            meta["days_until_expiry"] = self.days_until
        if self.years_remaining is not None:
            meta["years_remaining"] = self.years_remaining
            meta["vehicle_age"] = self.vehicle_age
        return meta


def coerce_date(value: Any, field_name: str = "date") -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            raise InvalidAlertInput(f"Unparseable {field_name}: {value!r}")
    raise InvalidAlertInput(f"Unsupported {field_name} value: {value!r}")


def days_until(due: date, today: date) -> int:
    """Whole days from today's midnight to the due date's midnight, rounded up."""
    delta = datetime.combine(due, datetime.min.time()) - datetime.combine(today, datetime.min.time())
    return math.ceil(delta.total_seconds() / _SECONDS_PER_DAY)


def classify_document(days: int) -> Optional[str]:
    if days <= 0:
        return BUCKET_EXPIRED
    if days <= 7:
        return BUCKET_7_DAY
    if days <= 30:
        return BUCKET_30_DAY
    return None


def classify_service(days: int) -> Optional[str]:
    if days <= 0:
        return BUCKET_OVERDUE
    if days <= 7:
        return BUCKET_7_DAY
    if days <= 30:
        return BUCKET_30_DAY
    return None


def service_alert_type(service_id: str | UUID) -> str:
    return f"service_{service_id}"


def evaluate_documents(vehicle: VehicleFacts, today: date) -> list[AlertItem]:
    alerts: list[AlertItem] = []
    for doc_type, attr in DOCUMENT_FIELDS:
        due = getattr(vehicle, attr)
        if due is None:
            continue
        days = days_until(due, today)
        bucket = classify_document(days)
        if bucket is None:
            continue
        alerts.append(
            AlertItem(
                kind=KIND_DOCUMENT,
                vehicle=vehicle,
                alert_type=doc_type,
                bucket=bucket,
                label=DOCUMENT_LABELS[doc_type],
                due_date=due,
                days_until=days,
            )
        )
    return alerts


def evaluate_services(vehicle: VehicleFacts, services: list[ServiceDue], today: date) -> list[AlertItem]:
    alerts: list[AlertItem] = []
    for record in services:
        if record.next_service_due_date is None:
            continue
        days = days_until(record.next_service_due_date, today)
        bucket = classify_service(days)
        if bucket is None:
            continue
        alerts.append(
            AlertItem(
                kind=KIND_SERVICE,
                vehicle=vehicle,
                alert_type=service_alert_type(record.id),
                bucket=bucket,
                label=f"{record.service_type} service",
                due_date=record.next_service_due_date,
                days_until=days,
                service_id=record.id,
                service_type=record.service_type,
                extra={"next_service_due_km": record.next_service_due_km},
            )
        )
    return alerts
