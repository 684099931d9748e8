"""Pydantic configuration schema for tidyinbox.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models on startup and hot-reload.

Usage:
    from tidyinbox.config_schema import AppConfig

    # Validate a config dict
    config = AppConfig(**yaml_data)
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1


class DatabaseConfig(BaseModel):
    """SQLite database location."""

    path: str = Field(
        default="data/tidyinbox.db",
        description="Path to the SQLite database file",
    )

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Ensure database path doesn't contain path traversal."""
        if not v or not v.strip():
            raise ValueError("Database path cannot be empty")
        if ".." in v:
            raise ValueError("Database path cannot contain '..' (path traversal)")
        return v


class SweeperConfig(BaseModel):
    """Periodic sweeper configuration."""

    interval_seconds: int = Field(
        default=60,
        ge=10,
        le=3600,
        description="How often the driver looks for due schedule rules (seconds)",
    )
    fetch_limit: int = Field(
        default=100,
        ge=1,
        le=500,
        description="Max recent inbox items fetched per rule run",
    )
    batch_size: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Message ids per mutation call",
    )
    batch_delay_seconds: float = Field(
        default=0.5,
        ge=0.0,
        le=10.0,
        description="Pause between mutation batches (rate-limit friendliness)",
    )


class ClassifierConfig(BaseModel):
    """Heuristic classifier thresholds and keyword lists."""

    old_email_days: int = Field(
        default=30,
        ge=1,
        description="Age at which a message counts as old",
    )
    very_old_email_days: int = Field(
        default=90,
        ge=1,
        description="Age at which a message counts as very old",
    )
    recent_email_days: int = Field(
        default=7,
        ge=7,
        description="Messages younger than this always fail the safety gate (at least a week)",
    )
    min_group_size: int = Field(
        default=3,
        ge=3,
        description="Minimum members for a suggestion group (at least 3)",
    )
    importance_keywords: list[str] = Field(
        default=[
            "invoice", "payment", "receipt", "bill", "charge", "transaction",
            "urgent", "important", "action required", "deadline", "due",
            "legal", "contract", "agreement", "terms", "policy",
            "confirm", "verification", "security", "password", "account",
            "meeting", "schedule", "appointment", "interview",
        ],
        min_length=1,
        description="Keywords that make a message untouchable (cannot be empty)",
    )
    promotional_keywords: list[str] = Field(
        default=[
            "marketing", "promotion", "sale", "discount", "offer", "deal",
            "free", "limited time", "% off", "coupon",
        ],
        description="Keywords that mark promotional content",
    )
    newsletter_keywords: list[str] = Field(
        default=["newsletter", "digest", "weekly", "monthly", "opt out"],
        description="Keywords that mark newsletter content",
    )
    automated_sender_patterns: list[str] = Field(
        default=[
            "noreply", "no-reply", "donotreply", "do-not-reply", "automated",
            "bot", "notification", "mailer", "newsletter",
        ],
        description="Sender address fragments that identify automated senders",
    )

    @model_validator(mode="after")
    def validate_age_order(self) -> "ClassifierConfig":
        """Ensure the age thresholds are ordered."""
        if self.very_old_email_days < self.old_email_days:
            raise ValueError("very_old_email_days must be >= old_email_days")
        return self


class NotifierConfig(BaseModel):
    """Owner notification delivery."""

    kind: Literal["log", "webhook"] = Field(
        default="log",
        description="'log' writes notifications to the structured log, 'webhook' POSTs JSON",
    )
    webhook_url: str | None = Field(
        default=None,
        description="Endpoint receiving notification JSON when kind is 'webhook'",
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=60,
        description="HTTP timeout for webhook delivery",
    )

    @model_validator(mode="after")
    def validate_webhook_url(self) -> "NotifierConfig":
        """Require a URL when webhook delivery is selected."""
        if self.kind == "webhook" and not self.webhook_url:
            raise ValueError("webhook_url is required when notifier kind is 'webhook'")
        return self


class GatewayConfig(BaseModel):
    """Mail Gateway plug-in configuration."""

    factory: str | None = Field(
        default=None,
        description=(
            "Import path 'package.module:callable' returning (MailGateway, CredentialProvider)"
        ),
    )
    options: dict[str, str] = Field(
        default_factory=dict,
        description="Keyword arguments passed to the factory",
    )

    @field_validator("factory")
    @classmethod
    def validate_factory(cls, v: str | None) -> str | None:
        """Ensure factory path has the module:callable form."""
        if v is not None and (":" not in v or v.startswith(":") or v.endswith(":")):
            raise ValueError("Gateway factory must look like 'package.module:callable'")
        return v


class LoggingConfig(BaseModel):
    """Log output configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level",
    )
    json_output: bool = Field(
        default=True,
        description="JSON logs for the long-running process",
    )


class AppConfig(BaseModel):
    """Root configuration schema for tidyinbox.

    This model validates the entire config.yaml structure. On startup and
    hot-reload, the YAML is parsed and validated against this schema.

    If validation fails on startup, the application exits with a clear error.
    If validation fails on hot-reload, the previous valid config is kept.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    default_timezone: str = Field(
        default="UTC",
        description="Timezone used for new rules when none is given",
    )
    sweeper: SweeperConfig = Field(default_factory=SweeperConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    notifier: NotifierConfig = Field(default_factory=NotifierConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("default_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Ensure the timezone is a known IANA name."""
        from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone '{v}'") from e
        return v
