# app/core/logger.py
"""
Shared application logger
"""
import logging
import sys

from app.core.config import settings

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _configure() -> logging.Logger:
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

    # boto/httpx are chatty at INFO
    for noisy in ("botocore", "boto3", "urllib3", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logging.getLogger("vindoc")


logger = _configure()


def mask_phone(phone: str | None) -> str:
    """Keep the country code and leading digits, hide the rest."""
    value = (phone or "").strip()
    if not value:
        return ""
    return value[:6] + "****"
