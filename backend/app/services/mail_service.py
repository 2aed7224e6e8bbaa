from __future__ import annotations

from typing import Dict, Optional

import httpx

from app.core.config import AlertRunConfig
from app.core.logger import logger
from app.utils.exceptions import ConfigurationError, MailDeliveryError

RESEND_URL = "https://api.resend.com/emails"


class MailService:
    """Alert email sender with a dev provider that only logs."""

    def __init__(self, config: AlertRunConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.provider = config.mail_provider
        self.api_key = config.resend_api_key
        self.sender = config.mail_from
        self.timeout = config.mail_timeout_seconds
        self.transport = transport

    async def send(self, to: str, subject: str, html: str) -> Dict[str, str]:
        target = (to or "").strip()
        if self.provider == "dev":
            logger.info("[DEV ALERT EMAIL] to=%s subject=%s bytes=%d", target, subject, len(html))
            return {"provider": "dev", "target": target}
        if self.provider == "resend":
            if not self.api_key or not self.sender:
                raise ConfigurationError("Resend email config missing (RESEND_API_KEY/ALERT_EMAIL_FROM)")
            payload = {
                "from": self.sender,
                "to": [target],
                "subject": subject,
                "html": html,
            }
            headers = {
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            }
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                    resp = await client.post(RESEND_URL, json=payload, headers=headers)
            except httpx.TimeoutException as exc:
                raise MailDeliveryError(f"Resend email timed out after {self.timeout}s") from exc
            except httpx.HTTPError as exc:
                raise MailDeliveryError(f"Resend email transport error: {exc}") from exc
            if resp.status_code >= 400:
                raise MailDeliveryError(
                    f"Resend email failed: {resp.status_code} {resp.text[:200]}",
                    status_code=resp.status_code,
                )
            message_id = ""
            try:
                message_id = str(resp.json().get("id") or "")
            except ValueError:
                pass
            return {"provider": "resend", "target": target, "id": message_id}
        raise ConfigurationError(f"Unsupported MAIL_PROVIDER: {self.provider}")
