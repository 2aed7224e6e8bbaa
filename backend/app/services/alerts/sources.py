"""
Alert-source adapters. Each one turns vehicle data into AlertItems for a
single concern; the run config picks which ones take part.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Protocol

from sqlalchemy.orm import Session

from app.core.logger import logger
from app.services.alert_store import AlertStore
from app.services.alerts.lifespan import evaluate_lifespan
from app.services.alerts.rules import (
    AlertItem,
    ServiceDue,
    VehicleFacts,
    evaluate_documents,
    evaluate_services,
)
from app.utils.exceptions import ConfigurationError, InvalidAlertInput


@dataclass
class SourceOutput:
    alerts: list[AlertItem] = field(default_factory=list)
    skipped: list[dict[str, Any]] = field(default_factory=list)


class AlertSource(Protocol):
    name: str

    def collect(
        self,
        db: Session,
        store: AlertStore,
        vehicles: list[VehicleFacts],
        today: date,
    ) -> SourceOutput: ...


class DocumentAlertSource:
    name = "documents"

    def collect(self, db, store, vehicles, today) -> SourceOutput:
        out = SourceOutput()
        for vehicle in vehicles:
            out.alerts.extend(evaluate_documents(vehicle, today))
        return out


class ServiceAlertSource:
    name = "services"

    def collect(self, db, store, vehicles, today) -> SourceOutput:
        out = SourceOutput()
        by_id = {v.id: v for v in vehicles}
        grouped: dict[str, list[ServiceDue]] = {}

        for row in store.fetch_services_due(db):
            try:
                record = ServiceDue.from_row(row)
            except InvalidAlertInput as exc:
                logger.warning("Skipping service record %s: %s", row.id, exc)
                out.skipped.append({"scope": "service", "id": str(row.id), "reason": "invalid_data"})
                continue
            grouped.setdefault(record.vehicle_id, []).append(record)

        for vehicle_id, records in grouped.items():
            vehicle = by_id.get(vehicle_id)
            if vehicle is None:
                continue
            out.alerts.extend(evaluate_services(vehicle, records, today))
        return out


class LifespanAlertSource:
    name = "lifespan"

    def collect(self, db, store, vehicles, today) -> SourceOutput:
        out = SourceOutput()
        for vehicle in vehicles:
            alert = evaluate_lifespan(vehicle, today)
            if alert is not None:
                out.alerts.append(alert)
        return out


SOURCE_REGISTRY: dict[str, type] = {
    DocumentAlertSource.name: DocumentAlertSource,
    ServiceAlertSource.name: ServiceAlertSource,
    LifespanAlertSource.name: LifespanAlertSource,
}


def build_sources(names: tuple[str, ...]) -> list[AlertSource]:
    sources: list[AlertSource] = []
    for name in names:
        cls = SOURCE_REGISTRY.get(name)
        if cls is None:
            raise ConfigurationError(f"Unknown alert source: {name}")
        sources.append(cls())
    return sources
