"""Shared configuration management for the intake service.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FIELD_WEIGHTS: dict[str, float] = {
    "line_items": 0.25,
    "tax_breakdown": 0.20,
    "issuer_tax_id": 0.15,
    "grand_total": 0.15,
    "recipient_tax_id": 0.10,
    "invoice_number": 0.05,
    "issue_date": 0.05,
    "issuer_name": 0.03,
    "due_date": 0.01,
    "currency": 0.01,
}


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_AUTO_APPROVE_THRESHOLD=0.97
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    service_name: str = Field(
        default="docintake",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Extraction fallback chain
    provider_order: list[str] = Field(
        default=["openai", "vision", "tesseract"],
        description="Providers tried in order (most capable first, offline-capable last)",
    )
    provider_timeout_seconds: float = Field(
        default=45.0,
        gt=0,
        description="Default per-provider timeout; a timeout counts as provider unavailable",
    )
    provider_timeouts: dict[str, float] = Field(
        default_factory=dict,
        description="Per-provider timeout overrides, e.g. {\"tesseract\": 90}",
    )
    acceptance_floor: float = Field(
        default=0.85,
        ge=0,
        le=1,
        description="Minimum normalized confidence that stops the fallback chain",
    )

    # OpenAI (extraction provider "openai")
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="Vision-capable OpenAI model used for structured extraction",
    )

    # Google Cloud Vision (extraction provider "vision")
    vision_api_key: str = Field(
        default="",
        description="Cloud Vision API key (use env var APP_VISION_API_KEY)",
    )
    vision_endpoint: str = Field(
        default="https://vision.googleapis.com/v1/images:annotate",
        description="Cloud Vision annotate endpoint",
    )

    # Ollama (extraction provider "ollama")
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL",
    )
    ollama_model: str = Field(
        default="qwen2.5vl:7b",
        description="Multimodal Ollama model used for extraction",
    )

    # Tesseract (extraction provider "tesseract")
    tesseract_lang: str = Field(
        default="eng",
        description="Tesseract language pack(s), e.g. 'eng+hin'",
    )

    # Confidence & validation
    auto_approve_threshold: float = Field(
        default=0.95,
        ge=0,
        le=1,
        description="Weighted score required for auto-approval",
    )
    review_threshold: float = Field(
        default=0.85,
        ge=0,
        le=1,
        description="Reviews scoring below this are raised to medium priority",
    )
    field_review_floor: float = Field(
        default=0.85,
        ge=0,
        le=1,
        description="Fields scoring below this are reported as unclear",
    )
    high_value_threshold: float = Field(
        default=100000.0,
        ge=0,
        description="Grand totals above this always go to review",
    )
    amount_tolerance: float = Field(
        default=1.0,
        ge=0,
        description="Absolute tolerance for line items + taxes == grand total",
    )
    field_weights: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_FIELD_WEIGHTS),
        description="Importance weight per field for the weighted confidence score",
    )

    # Rate limiting
    rate_limit_max_requests: int = Field(
        default=20,
        ge=1,
        description="Requests allowed per identity within one window",
    )
    rate_limit_window_seconds: int = Field(
        default=3600,
        ge=1,
        description="Rate limit window length",
    )
    rate_limit_block_seconds: int = Field(
        default=3600,
        ge=1,
        description="How long an identity stays blocked after exceeding the limit",
    )

    # Sessions
    session_ttl_seconds: int = Field(
        default=86400,
        ge=1,
        description="Conversation session inactivity expiry (24h)",
    )
    processing_stale_seconds: int = Field(
        default=600,
        ge=1,
        description="A session stuck in 'processing' longer than this is reset to idle",
    )
    session_backend: Literal["redis", "memory"] = Field(
        default="redis",
        description="Session store: redis (shared, persistent) or memory (single process)",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for sessions, rate limits, documents and the worker",
    )
    purge_interval_minutes: int = Field(
        default=30,
        ge=1,
        le=59,
        description="How often the worker purges expired sessions",
    )
    review_retry_interval_minutes: int = Field(
        default=5,
        ge=1,
        le=59,
        description="How often the worker retries review-queue submissions that failed",
    )

    # WhatsApp Cloud API channel
    whatsapp_token: str = Field(
        default="",
        description="Graph API access token (use env var APP_WHATSAPP_TOKEN)",
    )
    whatsapp_verify_token: str = Field(
        default="",
        description="Pre-shared webhook verify token",
    )
    whatsapp_api_base: str = Field(
        default="https://graph.facebook.com/v20.0",
        description="Graph API base URL",
    )

    # Identity resolution
    default_country_code: str = Field(
        default="91",
        pattern=r"^\d{1,3}$",
        description="Country calling code assumed for numbers without one",
    )
    tenants_file: str | None = Field(
        default=None,
        description="Optional JSON file seeding tenants and clients into the identity store",
    )

    # External collaborators
    ledger_url: str = Field(
        default="http://localhost:8080/api/v1/ledger/entries",
        description="Ledger collaborator endpoint receiving committed invoices",
    )
    review_queue_url: str = Field(
        default="http://localhost:8080/api/v1/review-queue",
        description="Review queue collaborator endpoint",
    )
    collaborator_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="HTTP timeout for ledger/review queue calls",
    )

    # Storage configuration (S3-compatible object storage)
    storage_enabled: bool = Field(
        default=False,
        description="Store raw documents in S3-compatible storage (MinIO)",
    )
    storage_endpoint: str = Field(
        default="localhost:9000",
        description="S3-compatible storage endpoint (host:port)",
    )
    storage_access_key: str = Field(
        default="",
        description="Storage access key (use env var APP_STORAGE_ACCESS_KEY)",
    )
    storage_secret_key: str = Field(
        default="",
        description="Storage secret key (use env var APP_STORAGE_SECRET_KEY)",
    )
    storage_bucket: str = Field(
        default="documents",
        description="Default bucket name for document storage",
    )
    storage_secure: bool = Field(
        default=False,
        description="Use HTTPS for storage connections",
    )

    def timeout_for(self, provider: str) -> float:
        """Timeout in seconds for one provider call."""
        return self.provider_timeouts.get(provider, self.provider_timeout_seconds)


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
