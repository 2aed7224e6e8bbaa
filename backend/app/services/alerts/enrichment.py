from __future__ import annotations

import asyncio
import json
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Any, Literal, Optional

import boto3
from botocore.config import Config
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from app.core.config import AlertRunConfig
from app.core.logger import logger
from app.services.alerts.rules import (
    BUCKET_EXCEEDED,
    BUCKET_EXPIRED,
    BUCKET_OVERDUE,
    BUCKET_7_DAY,
    KIND_DOCUMENT,
    KIND_LIFESPAN,
    KIND_SERVICE,
    AlertItem,
)
from app.utils.exceptions import AdviceGenerationError

URGENCY_LEVELS = ("Critical", "High", "Medium", "Low")

# Which follow-up field each alert kind must carry.
DETAIL_FIELD = {
    KIND_DOCUMENT: "consequences",
    KIND_SERVICE: "reminder",
    KIND_LIFESPAN: "options",
}


class AdviceContent(BaseModel):
    """Advice payload attached to an alert and stored with its log row."""
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    estimatedCost: str
    tip: str
    urgency: Literal["Critical", "High", "Medium", "Low"]
    consequences: Optional[str] = None
    options: Optional[str] = None
    reminder: Optional[str] = None
    estimatedValue: Optional[str] = None

    @field_validator("urgency", mode="before")
    @classmethod
    def normalize_urgency(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().capitalize()
        return v

    @field_validator("estimatedCost", "tip")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v:
            raise ValueError("must not be empty")
        return v


def _status_phrase(alert: AlertItem) -> str:
    if alert.kind == KIND_LIFESPAN:
        if alert.bucket == BUCKET_EXCEEDED:
            return "Vehicle has exceeded its permitted age limit"
        return f"{alert.years_remaining} year(s) left before the age limit"
    if alert.bucket in (BUCKET_EXPIRED, BUCKET_OVERDUE):
        return "EXPIRED" if alert.kind == KIND_DOCUMENT else "OVERDUE"
    if alert.bucket == BUCKET_7_DAY:
        return "Due in 7 days or less"
    return "Due in 30 days or less"


def fallback_advice(alert: AlertItem) -> dict[str, Any]:
    """Advice built from local data only, used whenever the model is unavailable."""
    if alert.kind == KIND_SERVICE:
        urgency = "High" if alert.bucket == BUCKET_OVERDUE else "Medium" if alert.bucket == BUCKET_7_DAY else "Low"
        return {
            "estimatedCost": "Check with your service center for the current estimate",
            "tip": f"Book your {alert.service_type or 'scheduled'} service at the earliest available slot.",
            "urgency": urgency,
            "reminder": "Regular servicing keeps the vehicle reliable and avoids costly repairs.",
        }
    if alert.kind == KIND_LIFESPAN:
        fuel = (alert.vehicle.fuel_type or "").strip().lower()
        return {
            "estimatedCost": "Depends on the option you choose",
            "tip": (
                f"Your {fuel} vehicle is {alert.vehicle_age} years old against a "
                f"{alert.max_lifespan}-year metro limit. Plan ahead for its next stage."
            ),
            "urgency": "Critical" if alert.bucket == BUCKET_EXCEEDED else "High",
            "options": "Re-register outside metro limits, sell, or scrap under the vehicle scrappage policy.",
            "estimatedValue": "Get a valuation from a certified dealer",
        }
    urgency = "Critical" if alert.bucket == BUCKET_EXPIRED else "High" if alert.bucket == BUCKET_7_DAY else "Medium"
    return {
        "estimatedCost": "Contact your local RTO/insurer for pricing",
        "tip": f"Renew your {alert.label} before it expires to avoid penalties.",
        "urgency": urgency,
        "consequences": "Driving with expired documents may result in fines and legal issues.",
    }


class AdviceEnricher:
    """
    Attaches advice to each alert. Never raises: every failure path ends in
    ``fallback_advice``.
    """

    def __init__(self, config: AlertRunConfig, client: Any = None) -> None:
        self.model_id = config.ai_model_id if config.ai_enabled else ""
        self.timeout = config.ai_timeout_seconds
        self.max_parallel = config.ai_max_concurrency
        self.client = client
        if self.client is None and self.model_id:
            self.client = boto3.client(
                "bedrock-runtime",
                region_name=config.aws_region,
                aws_access_key_id=config.aws_access_key_id,
                aws_secret_access_key=config.aws_secret_access_key,
                config=Config(
                    connect_timeout=5,
                    read_timeout=self.timeout,
                    retries={"max_attempts": 2, "mode": "standard"},
                ),
            )

    def _build_prompt(self, alert: AlertItem, today: date) -> str:
        v = alert.vehicle
        vehicle_age = today.year - v.registration_date.year if v.registration_date else None
        lines = [
            "You are an expert on Indian vehicle documentation and RTO procedures.",
            "",
            f"Vehicle: {v.display_name}",
            f"Vehicle Class: {v.vehicle_class or 'Unknown'}",
            f"Fuel Type: {v.fuel_type or 'Unknown'}",
            f"Vehicle Age: {f'{vehicle_age} years' if vehicle_age is not None else 'Unknown'}",
            f"Registration: {v.registration_number}",
            "",
        ]
        detail = DETAIL_FIELD[alert.kind]
        if alert.kind == KIND_LIFESPAN:
            lines += [
                f"Age limit: {alert.max_lifespan} years (metro)",
                f"Years remaining: {alert.years_remaining}",
                f"Status: {_status_phrase(alert)}",
                "",
                "Advise the owner on what to do as the vehicle reaches its permitted age.",
            ]
            schema = (
                '{"estimatedCost": string, "tip": string (max 100 words), '
                '"urgency": "Critical"|"High"|"Medium"|"Low", '
                '"options": string (max 60 words), "estimatedValue": string}'
            )
        else:
            lines += [
                f"{'Service' if alert.kind == KIND_SERVICE else 'Document'}: {alert.label}",
                f"Due Date: {alert.due_date.isoformat() if alert.due_date else 'Unknown'}",
                f"Days Until Due: {alert.days_until}",
                f"Status: {_status_phrase(alert)}",
                "",
                "Provide practical, India-specific renewal advice.",
            ]
            schema = (
                '{"estimatedCost": string (INR range), "tip": string (max 100 words), '
                '"urgency": "Critical"|"High"|"Medium"|"Low", '
                f'"{detail}": string (max 50 words)}}'
            )
        lines += ["", f"Return STRICT JSON only, no markdown, with this shape: {schema}"]
        return "\n".join(lines)

    @staticmethod
    def _extract_json(text: str) -> dict[str, Any]:
        raw = (text or "").strip()
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
            return parsed if isinstance(parsed, dict) else {}
        except json.JSONDecodeError:
            pass

        m = re.search(r"```json\s*(\{.*?\})\s*```", raw, re.DOTALL | re.IGNORECASE)
        if m:
            try:
                return json.loads(m.group(1))
            except json.JSONDecodeError:
                return {}

        m2 = re.search(r"\{.*\}", raw, re.DOTALL)
        if m2:
            try:
                return json.loads(m2.group(0))
            except json.JSONDecodeError:
                return {}
        return {}

    def _invoke(self, prompt: str) -> str:
        response = self.client.invoke_model(
            modelId=self.model_id,
            body=json.dumps(
                {
                    "anthropic_version": "bedrock-2023-05-31",
                    "max_tokens": 600,
                    "temperature": 0.2,
                    "system": "You provide vehicle document renewal advice for Indian vehicle owners. Always respond with valid JSON.",
                    "messages": [{"role": "user", "content": prompt}],
                }
            ),
        )
        body = json.loads(response["body"].read())
        text = ""
        for part in body.get("content", []):
            if isinstance(part, dict) and part.get("type", "text") == "text":
                text += str(part.get("text") or "")
        return text

    def generate(self, alert: AlertItem, today: date) -> dict[str, Any]:
        """Ask the model for advice. Raises on any vendor or schema problem."""
        if not self.model_id or self.client is None:
            raise AdviceGenerationError("Advice model not configured")

        parsed = self._extract_json(self._invoke(self._build_prompt(alert, today)))
        if not parsed:
            raise AdviceGenerationError("Malformed JSON from model")
        try:
            advice = AdviceContent.model_validate(parsed)
        except ValidationError as exc:
            raise AdviceGenerationError(f"Advice failed validation: {exc.error_count()} error(s)") from exc

        detail = DETAIL_FIELD[alert.kind]
        if not getattr(advice, detail):
            raise AdviceGenerationError(f"Advice missing {detail}")
        return advice.model_dump(exclude_none=True)

    def _apply_fallback(self, alert: AlertItem, reason: str) -> AlertItem:
        logger.warning(
            "Advice fallback for vehicle=%s type=%s bucket=%s: %s",
            alert.vehicle_id, alert.alert_type, alert.bucket, reason,
        )
        alert.advice = fallback_advice(alert)
        alert.advice_source = "fallback"
        return alert

    async def _enrich_one(
        self, sem: asyncio.Semaphore, pool: ThreadPoolExecutor, alert: AlertItem, today: date
    ) -> AlertItem:
        if not self.model_id:
            alert.advice = fallback_advice(alert)
            alert.advice_source = "fallback"
            return alert

        # A timed-out call keeps its pool worker until invoke_model returns,
        # so the pool size is the hard ceiling on in-flight vendor calls.
        loop = asyncio.get_running_loop()
        async with sem:
            try:
                alert.advice = await asyncio.wait_for(
                    loop.run_in_executor(pool, self.generate, alert, today),
                    timeout=self.timeout,
                )
                alert.advice_source = "ai"
                return alert
            except asyncio.TimeoutError:
                return self._apply_fallback(alert, f"timed out after {self.timeout}s")
            except Exception as exc:
                return self._apply_fallback(alert, str(exc) or exc.__class__.__name__)

    async def enrich_all(self, alerts: list[AlertItem], today: date) -> list[AlertItem]:
        sem = asyncio.Semaphore(self.max_parallel)
        pool = ThreadPoolExecutor(max_workers=self.max_parallel, thread_name_prefix="advice")
        try:
            return list(await asyncio.gather(*(self._enrich_one(sem, pool, a, today) for a in alerts)))
        finally:
            # Queued calls are cancelled; running ones finish in the background.
            pool.shutdown(wait=False, cancel_futures=True)
