"""
Consolidated per-recipient delivery of enriched alerts.

For each recipient the side effects are strictly ordered and gated:

    1. send one email with every alert
    2. on success, write one notification-log row per alert
    3. on successful log commit, append one vehicle-history row per new log row

A failed send leaves nothing behind, so the same alerts are picked up again
on the next run. A failure for one recipient never stops the others.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.logger import logger
from app.services.alert_store import AlertStore
from app.services.alerts.email_renderer import AlertEmailRenderer, bucket_words
from app.services.alerts.rules import AlertItem
from app.services.mail_service import MailService


@dataclass
class RecipientBatch:
    user_id: str
    email: str
    alerts: list[AlertItem]


@dataclass
class DispatchReport:
    emails_sent: int = 0
    notifications_logged: int = 0
    already_logged: int = 0
    history_logged: int = 0
    skipped: list[dict[str, Any]] = field(default_factory=list)
    delivered: list[RecipientBatch] = field(default_factory=list)

    def skip(self, user_id: str, reason: str, **extra: Any) -> None:
        self.skipped.append({"scope": "recipient", "id": user_id, "reason": reason, **extra})


def group_by_recipient(alerts: list[AlertItem]) -> dict[str, list[AlertItem]]:
    grouped: dict[str, list[AlertItem]] = {}
    for alert in alerts:
        grouped.setdefault(alert.user_id, []).append(alert)
    return grouped


class NotificationDispatcher:
    def __init__(self, store: AlertStore, mailer: MailService, renderer: AlertEmailRenderer) -> None:
        self.store = store
        self.mailer = mailer
        self.renderer = renderer

    def resolve_recipients(
        self,
        db: Session,
        alerts: list[AlertItem],
    ) -> tuple[list[RecipientBatch], list[dict[str, Any]]]:
        batches: list[RecipientBatch] = []
        skipped: list[dict[str, Any]] = []

        for user_id, items in group_by_recipient(alerts).items():
            try:
                email = self.store.get_user_email(db, user_id)
            except SQLAlchemyError as exc:
                db.rollback()
                logger.warning("Email lookup failed for user %s: %s", user_id, exc)
                skipped.append({"scope": "recipient", "id": user_id, "reason": "email_lookup_failed"})
                continue
            if not email:
                logger.warning("No email for user %s, skipping %d alert(s)", user_id, len(items))
                skipped.append({"scope": "recipient", "id": user_id, "reason": "no_email"})
                continue
            batches.append(RecipientBatch(user_id=user_id, email=email, alerts=items))

        return batches, skipped

    async def dispatch(self, db: Session, batches: list[RecipientBatch]) -> DispatchReport:
        report = DispatchReport()
        for batch in batches:
            await self._dispatch_one(db, batch, report)
        return report

    async def _dispatch_one(self, db: Session, batch: RecipientBatch, report: DispatchReport) -> None:
        message = self.renderer.render(batch.alerts)

        # 1. send
        try:
            await self.mailer.send(batch.email, message.subject, message.html)
        except Exception as exc:
            logger.error("Failed to send alert email to user %s: %s", batch.user_id, exc)
            report.skip(batch.user_id, "send_failed", error=str(exc)[:200])
            return
        report.emails_sent += 1
        logger.info("Alert email sent user=%s alerts=%d", batch.user_id, len(batch.alerts))

        # 2. log
        inserted: list[AlertItem] = []
        try:
            for alert in batch.alerts:
                if self.store.record_notification(db, alert):
                    inserted.append(alert)
                else:
                    report.already_logged += 1
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Notification log write failed for user %s", batch.user_id)
            report.skip(batch.user_id, "log_write_failed", error=str(exc)[:200])
            return
        report.notifications_logged += len(inserted)
        report.delivered.append(batch)

        # 3. audit
        if not inserted:
            return
        try:
            for alert in inserted:
                description = f"{bucket_words(alert.bucket)} alert sent for {alert.label}"
                self.store.append_history(db, alert, description)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Vehicle history write failed for user %s: %s", batch.user_id, exc)
            report.skipped.append({"scope": "history", "id": batch.user_id, "reason": "history_write_failed"})
            return
        report.history_logged += len(inserted)
