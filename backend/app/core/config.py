# app/core/config.py
"""
Application configuration using Pydantic Settings
"""
from dataclasses import dataclass
from typing import List, Optional, Tuple
import json

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.utils.exceptions import ConfigurationError


KNOWN_ALERT_SOURCES = ("documents", "services", "lifespan")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables
    """

    # Application
    APP_NAME: str = "VinDoc"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str

    # AWS Configuration
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "ap-south-1"
    BEDROCK_MODEL_ID: str = "anthropic.claude-3-haiku-20240307-v1:0"
    ALERTS_BEDROCK_MODEL_ID: str = ""

    @field_validator("BEDROCK_MODEL_ID", "ALERTS_BEDROCK_MODEL_ID", mode="before")
    @classmethod
    def strip_model_id(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip()
        return v

    # Advice generation
    AI_ENRICHMENT_ENABLED: bool = True
    AI_TIMEOUT_SECONDS: float = 20.0
    AI_MAX_CONCURRENCY: int = 5

    # Alert email delivery
    MAIL_PROVIDER: str = "dev"  # dev | resend
    RESEND_API_KEY: str = ""
    ALERT_EMAIL_FROM: str = ""
    ALERT_APP_URL: str = "https://vindoc.app"
    MAIL_TIMEOUT_SECONDS: float = 20.0

    # Expiry alert batch
    ALERT_SOURCES: str = "documents,services,lifespan"
    ALERT_TIMEZONE: str = "Asia/Kolkata"
    EXPIRY_ALERTS_SCHEDULER_ENABLED: bool = False
    EXPIRY_ALERTS_HOUR_IST: int = 9
    EXPIRY_ALERTS_MINUTE_IST: int = 0
    WORKER_TOKEN: str = ""

    # Voice reminders
    VOICE_PROVIDER: str = "dev"  # dev | bolna
    BOLNA_API_KEY: str = ""
    BOLNA_API_BASE: str = "https://api.bolna.ai"
    BOLNA_WEBHOOK_SECRET: str = ""
    VOICE_CALLER_ID: str = "+918035452070"
    VOICE_MAX_CALLS_PER_DAY: int = 2
    VOICE_COOLDOWN_HOURS: int = 24
    VOICE_DEFAULT_LANGUAGE: str = "en"
    VOICE_TIMEOUT_SECONDS: float = 20.0
    VOICE_FANOUT_ENABLED: bool = False

    # CORS
    CORS_ORIGINS: str = '["http://localhost:3000"]'

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from string to list"""
        try:
            if isinstance(self.CORS_ORIGINS, str):
                return json.loads(self.CORS_ORIGINS)
            return self.CORS_ORIGINS
        except json.JSONDecodeError:
            return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


@dataclass(frozen=True)
class AlertRunConfig:
    """
    Snapshot of everything one alert run or voice call request needs.

    Built once per invocation from ``Settings`` and handed to each component,
    so evaluators and senders never read process-wide state on their own.
    """

    alert_sources: Tuple[str, ...] = KNOWN_ALERT_SOURCES
    timezone: str = "Asia/Kolkata"

    ai_enabled: bool = True
    ai_model_id: str = ""
    ai_timeout_seconds: float = 20.0
    ai_max_concurrency: int = 5
    aws_region: str = "ap-south-1"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None

    mail_provider: str = "dev"
    resend_api_key: str = ""
    mail_from: str = ""
    mail_timeout_seconds: float = 20.0
    app_url: str = "https://vindoc.app"

    voice_provider: str = "dev"
    bolna_api_key: str = ""
    bolna_api_base: str = "https://api.bolna.ai"
    voice_caller_id: str = "+918035452070"
    voice_max_calls_per_day: int = 2
    voice_cooldown_hours: int = 24
    voice_default_language: str = "en"
    voice_timeout_seconds: float = 20.0
    voice_fanout_enabled: bool = False

    @classmethod
    def from_settings(cls, s: Settings) -> "AlertRunConfig":
        sources = tuple(
            part.strip().lower()
            for part in (s.ALERT_SOURCES or "").split(",")
            if part.strip()
        )
        return cls(
            alert_sources=sources,
            timezone=(s.ALERT_TIMEZONE or "Asia/Kolkata").strip(),
            ai_enabled=s.AI_ENRICHMENT_ENABLED,
            ai_model_id=s.ALERTS_BEDROCK_MODEL_ID or s.BEDROCK_MODEL_ID or "",
            ai_timeout_seconds=float(s.AI_TIMEOUT_SECONDS),
            ai_max_concurrency=max(1, int(s.AI_MAX_CONCURRENCY)),
            aws_region=s.AWS_REGION,
            aws_access_key_id=s.AWS_ACCESS_KEY_ID or None,
            aws_secret_access_key=s.AWS_SECRET_ACCESS_KEY or None,
            mail_provider=(s.MAIL_PROVIDER or "dev").strip().lower(),
            resend_api_key=(s.RESEND_API_KEY or "").strip(),
            mail_from=(s.ALERT_EMAIL_FROM or "").strip(),
            mail_timeout_seconds=float(s.MAIL_TIMEOUT_SECONDS),
            app_url=s.ALERT_APP_URL,
            voice_provider=(s.VOICE_PROVIDER or "dev").strip().lower(),
            bolna_api_key=(s.BOLNA_API_KEY or "").strip(),
            bolna_api_base=s.BOLNA_API_BASE.rstrip("/"),
            voice_caller_id=s.VOICE_CALLER_ID,
            voice_max_calls_per_day=int(s.VOICE_MAX_CALLS_PER_DAY),
            voice_cooldown_hours=int(s.VOICE_COOLDOWN_HOURS),
            voice_default_language=(s.VOICE_DEFAULT_LANGUAGE or "en").strip().lower(),
            voice_timeout_seconds=float(s.VOICE_TIMEOUT_SECONDS),
            voice_fanout_enabled=s.VOICE_FANOUT_ENABLED,
        )

    def validate(self) -> "AlertRunConfig":
        """Raise ConfigurationError if a selected vendor is missing credentials."""
        unknown = [src for src in self.alert_sources if src not in KNOWN_ALERT_SOURCES]
        if unknown:
            raise ConfigurationError(f"Unknown ALERT_SOURCES entries: {', '.join(unknown)}")
        if not self.alert_sources:
            raise ConfigurationError("ALERT_SOURCES selects no alert source")

        if self.mail_provider == "resend":
            if not self.resend_api_key or not self.mail_from:
                raise ConfigurationError("Resend email config missing (RESEND_API_KEY/ALERT_EMAIL_FROM)")
        elif self.mail_provider != "dev":
            raise ConfigurationError(f"Unsupported MAIL_PROVIDER: {self.mail_provider}")

        if self.ai_enabled and not self.ai_model_id:
            raise ConfigurationError("AI enrichment enabled but no Bedrock model id configured")

        # Voice settings only matter when the run places calls.
        if self.voice_fanout_enabled:
            self.validate_voice()
        return self

    def validate_voice(self) -> "AlertRunConfig":
        if self.voice_provider == "bolna":
            if not self.bolna_api_key:
                raise ConfigurationError("Bolna voice config missing (BOLNA_API_KEY)")
        elif self.voice_provider != "dev":
            raise ConfigurationError(f"Unsupported VOICE_PROVIDER: {self.voice_provider}")
        return self


# Create settings instance
settings = Settings()
