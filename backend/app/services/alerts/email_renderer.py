from __future__ import annotations

import html
from dataclasses import dataclass

from app.services.alerts.rules import (
    BUCKET_30_DAY,
    BUCKET_7_DAY,
    BUCKET_EXCEEDED,
    BUCKET_EXPIRED,
    BUCKET_OVERDUE,
    KIND_DOCUMENT,
    KIND_LIFESPAN,
    KIND_SERVICE,
    AlertItem,
)

_URGENCY_COLOR = {
    "Critical": "#dc2626",
    "High": "#ea580c",
    "Medium": "#ca8a04",
    "Low": "#2563eb",
}

_BUCKET_DOT = {
    BUCKET_EXPIRED: "#dc2626",
    BUCKET_OVERDUE: "#dc2626",
    BUCKET_EXCEEDED: "#dc2626",
    BUCKET_7_DAY: "#ea580c",
}

_TD = "padding:16px;border-bottom:1px solid #e5e7eb;"


def _e(value) -> str:
    return html.escape(str(value if value is not None else ""))


def status_text(alert: AlertItem) -> str:
    if alert.kind == KIND_LIFESPAN:
        if alert.bucket == BUCKET_EXCEEDED:
            return f"Exceeded {alert.max_lifespan}-year limit ({alert.vehicle_age} years old)"
        years = alert.years_remaining
        return f"{years} year{'s' if years != 1 else ''} left of {alert.max_lifespan}"
    if alert.bucket == BUCKET_EXPIRED:
        return "EXPIRED"
    if alert.bucket == BUCKET_OVERDUE:
        return "Overdue"
    verb = "Expires" if alert.kind == KIND_DOCUMENT else "Due"
    if alert.days_until == 1:
        return f"{verb} tomorrow"
    return f"{verb} in {alert.days_until} days"


def bucket_words(bucket: str) -> str:
    return bucket.replace("_", " ")


@dataclass
class RenderedEmail:
    subject: str
    html: str


class AlertEmailRenderer:
    def __init__(self, app_url: str) -> None:
        self.app_url = app_url

    @staticmethod
    def subject_for(alerts: list[AlertItem]) -> str:
        expired = sum(1 for a in alerts if a.bucket in (BUCKET_EXPIRED, BUCKET_OVERDUE))
        urgent = sum(1 for a in alerts if a.bucket == BUCKET_7_DAY)
        upcoming = sum(1 for a in alerts if a.bucket == BUCKET_30_DAY)
        lifespan = sum(1 for a in alerts if a.kind == KIND_LIFESPAN)

        if expired:
            return f"{expired} item(s) expired or overdue - immediate action required"
        if urgent:
            return f"{urgent} item(s) due within 7 days - action needed"
        if upcoming:
            return f"{upcoming} item(s) due in the next 30 days"
        return f"{lifespan} vehicle(s) nearing the permitted age limit"

    def _advice_block(self, alert: AlertItem) -> str:
        advice = alert.advice or {}
        urgency = str(advice.get("urgency") or "Medium")
        color = _URGENCY_COLOR.get(urgency, "#ca8a04")
        rows = [
            f'<div style="margin-bottom:8px;"><strong>Estimated cost:</strong> {_e(advice.get("estimatedCost"))}</div>',
            f'<div style="margin-bottom:8px;"><strong>Tip:</strong> {_e(advice.get("tip"))}</div>',
        ]
        if alert.kind == KIND_LIFESPAN:
            if advice.get("estimatedValue"):
                rows.append(
                    f'<div style="margin-bottom:8px;"><strong>Estimated value:</strong> {_e(advice["estimatedValue"])}</div>'
                )
            detail = advice.get("options")
        elif alert.kind == KIND_SERVICE:
            detail = advice.get("reminder")
        else:
            detail = advice.get("consequences")
        rows.append(f'<div style="color:{color};"><strong>{_e(urgency)}:</strong> {_e(detail)}</div>')
        return "".join(rows)

    def _row(self, alert: AlertItem) -> str:
        v = alert.vehicle
        dot = _BUCKET_DOT.get(alert.bucket, "#ca8a04")
        due = (
            f'<div style="font-size:12px;color:#6b7280;">Due: {alert.due_date.strftime("%d/%m/%Y")}</div>'
            if alert.due_date
            else ""
        )
        return (
            "<tr>"
            f'<td style="{_TD}"><div style="font-weight:600;color:#1f2937;">{_e(v.registration_number)}</div>'
            f'<div style="font-size:14px;color:#6b7280;">{_e(v.maker_model or "Vehicle")}</div></td>'
            f'<td style="{_TD}"><div style="font-weight:500;">{_e(alert.label)}</div></td>'
            f'<td style="{_TD}"><div><span style="color:{dot};">&#9679;</span> {_e(status_text(alert))}</div>{due}</td>'
            "</tr>"
            "<tr>"
            f'<td colspan="3" style="{_TD}background-color:#f9fafb;">{self._advice_block(alert)}</td>'
            "</tr>"
        )

    def _section(self, title: str, alerts: list[AlertItem]) -> str:
        if not alerts:
            return ""
        body = "".join(self._row(a) for a in alerts)
        return (
            f'<h3 style="margin:24px 0 8px 0;color:#111827;">{_e(title)}</h3>'
            '<table style="width:100%;border-collapse:collapse;border:1px solid #e5e7eb;">'
            '<thead><tr style="background:#f3f4f6;">'
            '<th style="padding:12px 16px;text-align:left;">Vehicle</th>'
            '<th style="padding:12px 16px;text-align:left;">Item</th>'
            '<th style="padding:12px 16px;text-align:left;">Status</th>'
            f"</tr></thead><tbody>{body}</tbody></table>"
        )

    def render(self, alerts: list[AlertItem]) -> RenderedEmail:
        documents = [a for a in alerts if a.kind == KIND_DOCUMENT]
        services = [a for a in alerts if a.kind == KIND_SERVICE]
        lifespan = [a for a in alerts if a.kind == KIND_LIFESPAN]

        body = (
            '<!DOCTYPE html><html><head><meta charset="utf-8"></head>'
            '<body style="font-family:Arial,sans-serif;line-height:1.6;color:#374151;max-width:600px;margin:0 auto;padding:20px;">'
            '<div style="background:#1d4ed8;padding:32px;border-radius:12px 12px 0 0;text-align:center;">'
            '<h1 style="color:white;margin:0;font-size:24px;">Vehicle Document Alert</h1>'
            '<p style="color:rgba(255,255,255,0.9);margin:8px 0 0 0;">Your vehicles need attention</p></div>'
            '<div style="background:white;padding:24px;border:1px solid #e5e7eb;border-top:none;">'
            f"{self._section('Documents', documents)}"
            f"{self._section('Service reminders', services)}"
            f"{self._section('Vehicle lifespan', lifespan)}"
            '<div style="margin-top:24px;text-align:center;">'
            f'<a href="{_e(self.app_url)}" style="display:inline-block;background:#3b82f6;color:white;'
            'padding:12px 32px;border-radius:8px;text-decoration:none;font-weight:600;">View all documents</a>'
            "</div></div>"
            '<div style="background:#f9fafb;padding:16px;text-align:center;font-size:12px;color:#6b7280;">'
            "This is an automated reminder from VinDoc.</div>"
            "</body></html>"
        )
        return RenderedEmail(subject=self.subject_for(alerts), html=body)
