from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

import httpx

from app.core.config import AlertRunConfig
from app.core.logger import logger, mask_phone
from app.utils.exceptions import ConfigurationError, VoiceVendorError


class BolnaClient:
    """Places outbound calls through the voice vendor. The dev provider only logs."""

    def __init__(self, config: AlertRunConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.provider = config.voice_provider
        self.api_key = config.bolna_api_key
        self.base_url = config.bolna_api_base
        self.timeout = config.voice_timeout_seconds
        self.transport = transport

    async def place_call(self, payload: Dict[str, Any]) -> str:
        """Return the vendor call id."""
        phone = mask_phone(payload.get("recipient_phone_number"))
        if self.provider == "dev":
            call_id = f"dev-{uuid.uuid4()}"
            logger.info("[DEV VOICE CALL] to=%s agent=%s call_id=%s", phone, payload.get("agent_id"), call_id)
            return call_id
        if self.provider != "bolna":
            raise ConfigurationError(f"Unsupported VOICE_PROVIDER: {self.provider}")
        if not self.api_key:
            raise ConfigurationError("Bolna voice config missing (BOLNA_API_KEY)")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(f"{self.base_url}/call", json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise VoiceVendorError(f"Bolna call timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise VoiceVendorError(f"Bolna call transport error: {exc}") from exc

        if resp.status_code >= 400:
            raise VoiceVendorError(
                f"Bolna API error: {resp.status_code} {resp.text[:200]}",
                status_code=resp.status_code,
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise VoiceVendorError("Bolna API returned a non-JSON body") from exc

        call_id = str(body.get("call_id") or body.get("id") or "") if isinstance(body, dict) else ""
        logger.info("Voice call initiated to=%s call_id=%s", phone, call_id or "-")
        return call_id
