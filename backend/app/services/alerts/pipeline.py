"""
Expiry alert batch: evaluate -> deduplicate -> enrich -> dispatch.

One invocation is one pass over every vehicle. Nothing is kept in memory
between invocations; the notification log is the only memory the pipeline
has, which is what makes repeated runs safe.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from app.core.config import AlertRunConfig, settings
from app.core.logger import logger
from app.db.database import SessionLocal
from app.services.alert_store import AlertStore, alert_store
from app.services.alerts.dedup import filter_new_alerts
from app.services.alerts.dispatcher import DispatchReport, NotificationDispatcher, group_by_recipient
from app.services.alerts.email_renderer import AlertEmailRenderer
from app.services.alerts.enrichment import AdviceEnricher
from app.services.alerts.rules import BUCKET_7_DAY, BUCKET_EXPIRED, KIND_DOCUMENT, AlertItem, VehicleFacts
from app.services.alerts.sources import AlertSource, build_sources
from app.services.mail_service import MailService
from app.services.voice.call_gate import VoiceCallGate, VoiceCallRequest
from app.utils.exceptions import InvalidAlertInput, VinDocError

VOICE_FANOUT_BUCKETS = (BUCKET_7_DAY, BUCKET_EXPIRED)


@dataclass
class AlertRunSummary:
    run_date: str = ""
    evaluated: int = 0
    candidates: int = 0
    new_alerts: int = 0
    recipients: int = 0
    emails_sent: int = 0
    notifications_logged: int = 0
    already_logged: int = 0
    history_logged: int = 0
    voice_calls: int = 0
    skipped: list[dict[str, Any]] = field(default_factory=list)
    dry_run: bool = False

    def absorb(self, report: DispatchReport) -> None:
        self.emails_sent += report.emails_sent
        self.notifications_logged += report.notifications_logged
        self.already_logged += report.already_logged
        self.history_logged += report.history_logged
        self.skipped.extend(report.skipped)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class ExpiryAlertPipeline:
    def __init__(
        self,
        config: AlertRunConfig,
        store: Optional[AlertStore] = None,
        enricher: Optional[AdviceEnricher] = None,
        mailer: Optional[MailService] = None,
        voice_gate: Optional[VoiceCallGate] = None,
        sources: Optional[list[AlertSource]] = None,
    ) -> None:
        self.config = config
        self.store = store or alert_store
        self.sources = sources if sources is not None else build_sources(config.alert_sources)
        self._enricher = enricher
        self._mailer = mailer
        self._voice_gate = voice_gate

    # Vendor clients are only built when a real run needs them.
    @property
    def enricher(self) -> AdviceEnricher:
        if self._enricher is None:
            self._enricher = AdviceEnricher(self.config)
        return self._enricher

    @property
    def mailer(self) -> MailService:
        if self._mailer is None:
            self._mailer = MailService(self.config)
        return self._mailer

    @property
    def voice_gate(self) -> VoiceCallGate:
        if self._voice_gate is None:
            self._voice_gate = VoiceCallGate(self.config)
        return self._voice_gate

    def today(self) -> date:
        return datetime.now(ZoneInfo(self.config.timezone)).date()

    def evaluate(self, db: Session, today: date, summary: AlertRunSummary) -> list[AlertItem]:
        vehicles: list[VehicleFacts] = []
        for row in self.store.fetch_vehicles(db):
            try:
                vehicles.append(VehicleFacts.from_row(row))
            except InvalidAlertInput as exc:
                logger.warning("Skipping vehicle %s: %s", row.id, exc)
                summary.skipped.append({"scope": "vehicle", "id": str(row.id), "reason": "invalid_data"})
        summary.evaluated = len(vehicles)

        alerts: list[AlertItem] = []
        for source in self.sources:
            out = source.collect(db, self.store, vehicles, today)
            alerts.extend(out.alerts)
            summary.skipped.extend(out.skipped)
            logger.debug("Source %s produced %d alert(s)", source.name, len(out.alerts))
        return alerts

    async def run(self, db: Session, today: Optional[date] = None, dry_run: bool = False) -> AlertRunSummary:
        self.config.validate()
        today = today or self.today()
        summary = AlertRunSummary(run_date=today.isoformat(), dry_run=dry_run)
        logger.info("expiry_alerts_started date=%s dry_run=%s sources=%s",
                    summary.run_date, dry_run, ",".join(s.name for s in self.sources))

        candidates = self.evaluate(db, today, summary)
        summary.candidates = len(candidates)

        # Fails closed: PersistenceUnavailableError propagates and nothing is sent.
        notified = self.store.fetch_notified_keys(db, {a.vehicle_id for a in candidates})
        fresh = filter_new_alerts(candidates, notified)
        summary.new_alerts = len(fresh)

        if not fresh:
            logger.info("expiry_alerts_done no new alerts candidates=%d", summary.candidates)
            return summary

        if dry_run:
            summary.recipients = len(group_by_recipient(fresh))
            logger.info("expiry_alerts_done dry_run new_alerts=%d recipients=%d",
                        summary.new_alerts, summary.recipients)
            return summary

        dispatcher = NotificationDispatcher(self.store, self.mailer, AlertEmailRenderer(self.config.app_url))
        batches, skipped = dispatcher.resolve_recipients(db, fresh)
        summary.skipped.extend(skipped)
        summary.recipients = len(batches)

        to_enrich = [alert for batch in batches for alert in batch.alerts]
        await self.enricher.enrich_all(to_enrich, today)

        report = await dispatcher.dispatch(db, batches)
        summary.absorb(report)

        if self.config.voice_fanout_enabled:
            await self._voice_fanout(db, report, summary)

        logger.info(
            "expiry_alerts_done emails_sent=%d notifications_logged=%d already_logged=%d "
            "history_logged=%d voice_calls=%d skipped=%d",
            summary.emails_sent, summary.notifications_logged, summary.already_logged,
            summary.history_logged, summary.voice_calls, len(summary.skipped),
        )
        return summary

    async def _voice_fanout(self, db: Session, report: DispatchReport, summary: AlertRunSummary) -> None:
        for batch in report.delivered:
            for alert in batch.alerts:
                if alert.kind != KIND_DOCUMENT or alert.bucket not in VOICE_FANOUT_BUCKETS:
                    continue
                request = VoiceCallRequest(
                    user_id=alert.user_id,
                    vehicle_id=alert.vehicle_id,
                    document_type=alert.alert_type,
                    days_until_expiry=alert.days_until or 0,
                    owner_name=alert.vehicle.owner_name,
                    registration_number=alert.vehicle.registration_number,
                )
                try:
                    result = await self.voice_gate.request_call(db, request)
                except VinDocError as exc:
                    logger.warning("Voice fan-out failed for user %s: %s", alert.user_id, exc)
                    summary.skipped.append({"scope": "voice", "id": alert.user_id, "reason": "voice_unavailable"})
                    continue
                if result.status == "dispatched":
                    summary.voice_calls += 1
                else:
                    summary.skipped.append({
                        "scope": "voice",
                        "id": alert.user_id,
                        "reason": result.reason or result.status,
                    })


async def run_expiry_alert_job(dry_run: bool = False, today: Optional[date] = None) -> dict[str, Any]:
    config = AlertRunConfig.from_settings(settings)
    db = SessionLocal()
    try:
        summary = await ExpiryAlertPipeline(config).run(db, today=today, dry_run=dry_run)
        return summary.as_dict()
    except Exception:
        db.rollback()
        logger.exception("Expiry alert run aborted")
        raise
    finally:
        db.close()
