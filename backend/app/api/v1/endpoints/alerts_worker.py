"""
Expiry alert worker endpoint, called once a day by the AWS Lambda.

The Lambda (backend/lambda/expiry_alerts/) fires on an EventBridge cron and
POSTs to:  POST /api/v1/alerts-worker/run?dry_run=<bool>

Authentication: x-worker-token header must match settings.WORKER_TOKEN.
"""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.v1.deps import verify_worker_token
from app.core.config import AlertRunConfig, settings
from app.core.logger import logger
from app.db.database import get_db
from app.db.schemas import AlertRunResponse
from app.services.alerts.pipeline import ExpiryAlertPipeline
from app.utils.exceptions import ConfigurationError, PersistenceUnavailableError

router = APIRouter()


@router.post(
    "/run",
    response_model=AlertRunResponse,
    dependencies=[Depends(verify_worker_token)],
)
def run_expiry_alerts(
    dry_run: bool = Query(False, description="Evaluate and deduplicate without sending or writing"),
    db: Session = Depends(get_db),
):
    config = AlertRunConfig.from_settings(settings)
    try:
        # Sync handler: FastAPI runs it in the threadpool, so the blocking
        # queries of the batch stay off the event loop.
        summary = asyncio.run(ExpiryAlertPipeline(config).run(db, dry_run=dry_run))
    except ConfigurationError as e:
        logger.error("alerts-worker/run: configuration error: %s", e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    except PersistenceUnavailableError as e:
        logger.error("alerts-worker/run: aborted, notification log unavailable: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Notification log unavailable, run aborted",
        )
    return AlertRunResponse(ok=True, **summary.as_dict())
