"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation; an invalid or missing value stops the
function at cold start with a ConfigurationError.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from item_master.exceptions import ConfigurationError


class Settings(BaseSettings):
    """
    Item master settings.

    Values come from the environment or a local .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===================
    # SQS PUBLISHING
    # ===================
    sqs_queue_url: Optional[str] = Field(None, description="Target SQS queue URL")
    sqs_max_retries: int = Field(default=2, ge=0, le=10)
    sqs_base_delay_ms: int = Field(default=1000, gt=0)
    sqs_backoff_multiplier: float = Field(default=2.0, gt=1.0)
    sqs_retry_jitter: bool = Field(default=False, description="Randomly lengthen backoff delays by up to 25%")
    sqs_batch_size: int = Field(default=100, ge=1, le=500)
    sqs_circuit_breaker_failure_threshold: int = Field(default=5, ge=1, le=20)
    sqs_circuit_breaker_duration_of_break_seconds: int = Field(default=30, ge=1, le=300)
    sqs_circuit_breaker_sampling_duration_seconds: int = Field(default=60, ge=1, le=600)
    sqs_circuit_breaker_minimum_throughput: int = Field(default=3, ge=1, le=100)

    # ===================
    # AWS
    # ===================
    aws_region: str = Field(default="us-east-1")
    localstack_endpoint: Optional[str] = Field(None, description="Endpoint override for local AWS")

    # ===================
    # WAREHOUSE
    # ===================
    warehouse_url: Optional[str] = Field(None, description="SQLAlchemy URL of the analytical warehouse")
    warehouse_database: Optional[str] = None
    warehouse_schema: Optional[str] = None
    warehouse_table: Optional[str] = None

    # ===================
    # AUDIT STORE
    # ===================
    audit_database_url: Optional[str] = Field(None, description="SQLAlchemy URL of the audit database")
    audit_create_schema: bool = Field(default=False, description="Create the audit table on startup")

    # ===================
    # PROCESSING
    # ===================
    latest_items_limit: int = Field(default=100, ge=1, le=1000)
    barcode_cutover_date: datetime = Field(
        default=datetime(2024, 1, 1, tzinfo=timezone.utc),
        description="Items created before this date fall back to the secondary barcode",
    )
    apparel_category_keywords: str = Field(default="apparel,clothing,textile,garment")
    strict_request_parsing: bool = False
    deadline_safety_margin_ms: int = Field(default=30000, ge=0)

    # ===================
    # RUNTIME
    # ===================
    itemmaster_test_mode: bool = Field(default=False, description="Use in-memory collaborators")
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unsupported log level {value!r}")
        return level

    @field_validator("barcode_cutover_date")
    @classmethod
    def cutover_in_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def check_production_requirements(self) -> "Settings":
        if self.itemmaster_test_mode:
            return self
        missing = [
            name
            for name in ("sqs_queue_url", "warehouse_url", "warehouse_table", "audit_database_url")
            if not getattr(self, name)
        ]
        if missing:
            raise ValueError(f"missing required settings: {', '.join(n.upper() for n in missing)}")
        return self

    @property
    def apparel_keywords(self) -> tuple[str, ...]:
        return tuple(
            keyword.strip().lower()
            for keyword in self.apparel_category_keywords.split(",")
            if keyword.strip()
        )


def load_settings(**overrides) -> Settings:
    """Load and validate settings, converting validation failures to ConfigurationError."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ())) or "settings"
        raise ConfigurationError(
            message=f"Invalid configuration: {e}",
            config_key=location.upper(),
            original_exception=e,
        ) from e
