# app/api/v1/deps.py

import hmac
from typing import Optional

from fastapi import Header, HTTPException, status

from app.core.config import settings
from app.utils.exceptions import WebhookAuthError, WorkerAuthError

# ============================================================================
# Worker token (Lambda / scheduler callers)
# ============================================================================

def verify_worker_token(x_worker_token: Optional[str] = Header(None)) -> None:
    """
    Validate the x-worker-token header sent by the scheduler Lambda.
    If WORKER_TOKEN is empty the worker endpoints are disabled (503).
    """
    expected = (settings.WORKER_TOKEN or "").strip()
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Worker endpoint not configured (WORKER_TOKEN unset)",
        )
    if not x_worker_token or not hmac.compare_digest(x_worker_token.strip(), expected):
        raise WorkerAuthError()


# ============================================================================
# Voice vendor webhook
# ============================================================================

def verify_webhook_secret(x_webhook_secret: Optional[str] = Header(None)) -> None:
    """Only enforced when BOLNA_WEBHOOK_SECRET is configured."""
    expected = (settings.BOLNA_WEBHOOK_SECRET or "").strip()
    if not expected:
        return
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret.strip(), expected):
        raise WebhookAuthError()
