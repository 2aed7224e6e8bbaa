"""
Health and readiness checks – verify database and Bedrock connectivity.
"""
import json

from fastapi import APIRouter
from sqlalchemy import text

from app.core.config import settings
from app.core.logger import logger
from app.db.database import SessionLocal

router = APIRouter()


def _check_database() -> tuple[str, str]:
    """Returns (status, detail). Status is 'ok' or 'error'."""
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        return "ok", "Database reachable"
    except Exception as e:
        logger.exception("Database check failed")
        return "error", f"Database: {str(e)}"
    finally:
        db.close()


def _check_bedrock() -> tuple[str, str]:
    """Returns (status, detail). Status is 'ok' or 'error'."""
    if not settings.AI_ENRICHMENT_ENABLED:
        return "ok", "AI enrichment disabled, fallback advice only"
    try:
        import boto3

        client = boto3.client(
            "bedrock-runtime",
            region_name=settings.AWS_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
        )
        model_id = settings.ALERTS_BEDROCK_MODEL_ID or settings.BEDROCK_MODEL_ID
        body = json.dumps({
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": 32,
            "temperature": 0,
            "messages": [
                {"role": "user", "content": "Reply with exactly: OK"}
            ],
        })
        response = client.invoke_model(modelId=model_id, body=body)
        response_body = json.loads(response["body"].read())
        text_out = response_body.get("content", [{}])[0].get("text", "").strip()
        return "ok", f"Bedrock responded: {text_out[:50]}"
    except Exception as e:
        logger.exception("Bedrock check failed")
        return "error", f"Bedrock: {str(e)}"


@router.get("/ready")
def readiness():
    """
    Check if the database and Bedrock are reachable.
    Bedrock being down only degrades advice quality, alerts still go out.
    """
    db_status, db_detail = _check_database()
    bedrock_status, bedrock_detail = _check_bedrock()

    if db_status != "ok":
        overall = "unhealthy"
    elif bedrock_status != "ok":
        overall = "degraded"
    else:
        overall = "healthy"
    return {
        "status": overall,
        "database": {"status": db_status, "detail": db_detail},
        "bedrock": {"status": bedrock_status, "detail": bedrock_detail},
    }
