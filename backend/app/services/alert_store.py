from __future__ import annotations

import uuid
from typing import Any, Iterable, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.models import ExpiryNotification, ServiceRecord, User, Vehicle, VehicleHistory, utcnow
from app.services.alerts.rules import AlertItem
from app.utils.exceptions import PersistenceUnavailableError

_IN_CHUNK = 500


def dialect_insert(db: Session, table):
    """INSERT construct that supports ON CONFLICT for the bound backend."""
    name = db.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"ON CONFLICT insert not supported for dialect {name}")


def as_uuid(value: Any) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def _chunks(values: list, size: int = _IN_CHUNK) -> Iterable[list]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


class AlertStore:
    def fetch_vehicles(self, db: Session) -> list[Vehicle]:
        return db.query(Vehicle).order_by(Vehicle.created_at.asc()).all()

    def fetch_services_due(self, db: Session) -> list[ServiceRecord]:
        return (
            db.query(ServiceRecord)
            .filter(ServiceRecord.next_service_due_date.isnot(None))
            .all()
        )

    def fetch_notified_keys(self, db: Session, vehicle_ids: Iterable[str]) -> set[tuple[str, str, str]]:
        """
        Natural keys already announced for the given vehicles.

        Any read failure is re-raised as PersistenceUnavailableError: without
        the log we cannot tell a new alert from a repeat.
        """
        ids = sorted({str(v) for v in vehicle_ids})
        keys: set[tuple[str, str, str]] = set()
        try:
            for chunk in _chunks(ids):
                rows = (
                    db.query(
                        ExpiryNotification.vehicle_id,
                        ExpiryNotification.alert_type,
                        ExpiryNotification.bucket,
                    )
                    .filter(ExpiryNotification.vehicle_id.in_([as_uuid(v) for v in chunk]))
                    .all()
                )
                keys.update((str(vid), alert_type, bucket) for vid, alert_type, bucket in rows)
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceUnavailableError(f"Notification log read failed: {exc}") from exc
        return keys

    def record_notification(self, db: Session, alert: AlertItem) -> bool:
        """
        Insert the log row for ``alert`` unless its natural key exists.
        Returns False when another writer got there first.
        """
        table = ExpiryNotification.__table__
        stmt = dialect_insert(db, table).values(
            id=uuid.uuid4(),
            vehicle_id=as_uuid(alert.vehicle_id),
            user_id=as_uuid(alert.user_id),
            alert_type=alert.alert_type,
            bucket=alert.bucket,
            ai_content=alert.advice,
            sent_at=utcnow(),
            created_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_nothing(
            index_elements=[table.c.vehicle_id, table.c.alert_type, table.c.bucket],
        )
        result = db.execute(stmt)
        return bool(result.rowcount)

    def append_history(self, db: Session, alert: AlertItem, description: str) -> None:
        db.add(
            VehicleHistory(
                vehicle_id=as_uuid(alert.vehicle_id),
                user_id=as_uuid(alert.user_id),
                event_type="expiry_alert",
                event_description=description,
                event_metadata=alert.history_metadata(),
            )
        )

    def get_user_email(self, db: Session, user_id: str) -> Optional[str]:
        row = db.query(User.email).filter(User.id == as_uuid(user_id)).first()
        if not row:
            return None
        email = (row[0] or "").strip()
        return email or None


alert_store = AlertStore()
