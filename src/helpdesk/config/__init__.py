"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="Async SQLAlchemy connection URL (postgresql+asyncpg or sqlite+aiosqlite)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Engine ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA behaviour YAML file (default policies, at-risk windows)"
    )
    sla_evaluation_interval: int = Field(
        default=60,
        description="Seconds between breach sweeps; bounds staleness of stored breach flags",
        ge=10,
        le=60
    )
    sla_scheduler_enabled: bool = Field(
        default=True,
        description="Run the periodic breach sweep inside the API process"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
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
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str):
    """Ticket priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TicketStatus(str):
    """Ticket lifecycle statuses."""
    NEW = "new"
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    ON_HOLD = "on_hold"
    RESOLVED = "resolved"
    CLOSED = "closed"


class UserRole(str):
    """Caller roles as supplied by the authentication layer."""
    CLIENT = "client"
    AGENT = "agent"
    ADMIN = "admin"


class SLAType(str):
    """Types of SLA obligations."""
    RESPONSE = "response"
    RESOLUTION = "resolution"


class SLAState(str):
    """Per-obligation SLA states."""
    PENDING = "pending"
    AT_RISK = "at_risk"
    BREACHED = "breached"
    MET = "met"


class SLAStatus(str):
    """Overall ticket SLA status shown to users."""
    OK = "ok"
    AT_RISK = "at_risk"
    BREACHED = "breached"


# ========== Lists for validation ==========

VALID_PRIORITIES = [
    Priority.LOW, Priority.MEDIUM,
    Priority.HIGH, Priority.URGENT
]
VALID_STATUSES = [
    TicketStatus.NEW, TicketStatus.OPEN, TicketStatus.IN_PROGRESS,
    TicketStatus.ON_HOLD, TicketStatus.RESOLVED, TicketStatus.CLOSED
]
RESOLVED_STATUSES = [TicketStatus.RESOLVED, TicketStatus.CLOSED]
VALID_ROLES = [UserRole.CLIENT, UserRole.AGENT, UserRole.ADMIN]
VALID_SLA_TYPES = [SLAType.RESPONSE, SLAType.RESOLUTION]
