import json
import logging
import os
import urllib.error
import urllib.parse
import urllib.request
from datetime import datetime, timezone


logger = logging.getLogger()
logger.setLevel(logging.INFO)


def _build_headers() -> dict[str, str]:
    headers: dict[str, str] = {
        "Content-Type": "application/json",
        "User-Agent": "vindoc-expiry-alerts-lambda/1.0",
    }
    token = os.getenv("EXPIRY_ALERTS_WORKER_TOKEN", "").strip()
    if token:
        headers["x-worker-token"] = token
    return headers


def _dry_run(event) -> bool:  # noqa: ANN001
    if isinstance(event, dict) and "dry_run" in event:
        return bool(event["dry_run"])
    return os.getenv("EXPIRY_ALERTS_DRY_RUN", "").strip().lower() in ("1", "true", "yes")


def _run_once(dry_run: bool) -> dict:
    base_url = os.getenv("EXPIRY_ALERTS_WORKER_URL", "").strip()
    if not base_url:
        raise ValueError("EXPIRY_ALERTS_WORKER_URL is required")

    # A full run enriches every alert, so allow well over the default.
    timeout_seconds = int(os.getenv("EXPIRY_ALERTS_TIMEOUT_SECONDS", "600"))

    q = urllib.parse.urlencode({"dry_run": "true" if dry_run else "false"})
    url = f"{base_url}?{q}" if "?" not in base_url else f"{base_url}&{q}"

    request = urllib.request.Request(
        url=url,
        data=b"{}",
        method="POST",
        headers=_build_headers(),
    )
    with urllib.request.urlopen(request, timeout=timeout_seconds) as response:
        raw = response.read().decode("utf-8")
        status_code = getattr(response, "status", 200)
        body = json.loads(raw) if raw else {}
        return {"statusCode": status_code, "body": body}


def handler(event, context):  # noqa: ANN001
    started_at = datetime.now(timezone.utc).isoformat()
    try:
        result = _run_once(_dry_run(event))
        finished_at = datetime.now(timezone.utc).isoformat()
        logger.info("Expiry alerts run success: %s", result)
        return {
            "ok": True,
            "startedAt": started_at,
            "finishedAt": finished_at,
            "upstreamStatusCode": result["statusCode"],
            "upstreamBody": result["body"],
        }
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8", errors="replace")
        logger.exception("Expiry alerts run HTTP error")
        return {
            "ok": False,
            "startedAt": started_at,
            "finishedAt": datetime.now(timezone.utc).isoformat(),
            "statusCode": exc.code,
            "error": error_body,
        }
    except Exception as exc:  # noqa: BLE001
        logger.exception("Expiry alerts run failed")
        return {
            "ok": False,
            "startedAt": started_at,
            "finishedAt": datetime.now(timezone.utc).isoformat(),
            "statusCode": 500,
            "error": str(exc),
        }
