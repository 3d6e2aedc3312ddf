"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="civic-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/civic_issues",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Configuration ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA policy YAML file"
    )
    sla_sweep_interval: int = Field(
        default=900,
        description="Seconds between scheduled escalation sweeps (0 disables)",
        ge=0
    )
    sla_sweep_batch_size: int = Field(
        default=500,
        description="Maximum candidate issues evaluated per sweep",
        ge=1
    )
    sla_sweep_time_budget_seconds: float = Field(
        default=30.0,
        description="Wall-clock budget for a single sweep",
        gt=0
    )
    sla_conflict_retries: int = Field(
        default=2,
        description="Re-evaluations attempted after a concurrent update conflict",
        ge=0
    )
    sla_strict_priority: bool = Field(
        default=True,
        description="Reject unknown priorities on priority change instead of using the default duration"
    )

    # ========== Escalation Webhook ==========
    escalation_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook URL notified when an issue escalates"
    )
    escalation_webhook_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for webhook calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "testing", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str):
    """Issue priority levels."""
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class IssueStatus(str):
    """Issue lifecycle statuses."""
    REPORTED = "reported"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    REOPENED = "reopened"


class EscalationLevel(int):
    """Escalation levels derived from SLA progress."""
    NORMAL = 0
    WARNING = 1
    URGENT = 2
    BREACHED = 3


# ========== Lists for validation ==========

VALID_PRIORITIES = [
    Priority.URGENT, Priority.HIGH,
    Priority.MEDIUM, Priority.LOW
]
ESCALATION_LEVELS = [
    EscalationLevel.NORMAL, EscalationLevel.WARNING,
    EscalationLevel.URGENT, EscalationLevel.BREACHED
]

# Only these statuses are subject to escalation sweeps and SLA reporting
SLA_ACTIVE_STATUSES = [IssueStatus.REPORTED, IssueStatus.IN_PROGRESS]
