"""
Application configuration via environment variables.

Uses Pydantic BaseSettings to load and validate all config from env vars
or a .env.local file. Every setting has a sensible default for local
development so the app can start with minimal configuration.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment selector."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """
    Central configuration for the Service Survey SMS service.

    Values are loaded from environment variables first, falling back
    to a `.env.local` file in the project root. Secrets should NEVER
    be committed; use `.env.example` as the template.
    """

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Environment ──────────────────────────────────────────────
    environment: Environment = Environment.DEVELOPMENT

    # ── Twilio Messaging ─────────────────────────────────────────
    twilio_account_sid: str = Field(default="", description="Twilio account SID")
    twilio_auth_token: str = Field(default="", description="Twilio auth token")
    twilio_phone_number: str = Field(default="+15551234567", description="Sender number for survey SMS")
    twilio_api_base_url: str = Field(default="https://api.twilio.com", description="Twilio REST API base URL")
    base_url: str = Field(default="http://localhost:8000", description="Public URL used for status callbacks")

    # ── Generative Language Backend ──────────────────────────────
    gemini_api_key: str = Field(default="", description="Google AI API key")
    gemini_model: str = Field(default="gemini-1.5-flash", description="Model used for all generation calls")
    gemini_api_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Generative Language REST API base URL",
    )
    llm_timeout_seconds: float = Field(default=30.0, gt=0, description="Per-request timeout for generation calls")

    # ── Supabase ─────────────────────────────────────────────────
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_service_key: str = Field(default="", description="Supabase service-role key")

    # ── Redis ────────────────────────────────────────────────────
    redis_url: str = Field(default="", description="Redis URL; enables cross-process visit locks when set")
    visit_lock_timeout_seconds: int = Field(default=120, ge=5, le=900, description="Expiry of a visit lock")

    # ── Dealership Identity ──────────────────────────────────────
    dealership_name: str = Field(default="Premium Motors", description="Name used in survey greetings")

    # ── Survey Scheduling ────────────────────────────────────────
    survey_window_start_hours: int = Field(default=24, ge=0, description="Minimum age of a visit before surveying")
    survey_window_end_hours: int = Field(default=48, ge=1, description="Maximum age of a visit to survey")
    scheduler_poll_interval_seconds: float = Field(default=3600.0, gt=0, description="Delay between scheduler runs")

    # ── Operational Limits ───────────────────────────────────────
    max_retry_attempts: int = Field(default=3, ge=0, le=10, description="Max resend attempts per failed message")
    retry_lookback_hours: int = Field(default=24, ge=1, description="Only failed messages this recent are retried")

    # ── Dashboard API ────────────────────────────────────────────
    rate_limit_requests: int = Field(default=100, ge=1, description="Dashboard requests allowed per client per window")
    rate_limit_window_seconds: int = Field(default=60, ge=1, description="Length of the rate-limit window")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Root log level")

    # ── Derived helpers ──────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def status_callback_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/api/webhooks/twilio/status"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return cached Settings instance.

    Using lru_cache ensures we read env vars exactly once, and every
    module that calls ``get_settings()`` gets the same object.
    """
    return Settings()
