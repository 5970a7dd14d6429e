"""Configuration management for GiftGuard.

Risk thresholds live in ``RiskConfig`` so each evaluator can be built with its
own values (tests vary them per case). Process-level settings are loaded from
environment variables; nested risk values use a double underscore, e.g.
``RISK__THRESHOLDS__BLOCK=120``.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RiskThresholds(BaseModel):
    """Cumulative user risk score thresholds."""

    block: int = 100  # block the transaction
    review: int = 50  # route to manual review and watchlist the user
    revoke_access: int = 150  # strictly above this, access is revoked


class TransactionRules(BaseModel):
    """Per-transaction rule parameters."""

    max_tip_unverified: Decimal = Decimal("50")
    max_tip_verified: Decimal = Decimal("500")
    tip_limit_points: int = 40

    max_tips_per_window: int = 10
    frequency_window_sec: int = 3600
    frequency_points: int = 20

    smurfing_window_sec: int = 60
    smurfing_count: int = 5
    smurfing_max_amount: Decimal = Decimal("20")
    smurfing_points: int = 30

    # re-runs of an evaluation whose sender row changed under another writer
    conflict_retries: int = 3


class SessionRules(BaseModel):
    """Session review parameters."""

    dominant_tipper_ratio: float = 0.8
    micro_tip_amount: Decimal = Decimal("5")
    micro_tip_ratio: float = 0.7
    failure_rate: float = 0.5
    history_window_days: int = 14
    max_avg_risk_events: float = 10


class RiskConfig(BaseModel):
    """All tunable risk parameters, passed into both evaluators."""

    thresholds: RiskThresholds = Field(default_factory=RiskThresholds)
    transaction: TransactionRules = Field(default_factory=TransactionRules)
    session: SessionRules = Field(default_factory=SessionRules)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./giftguard.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
    log_file: Optional[str] = None

    # Risk engine
    risk: RiskConfig = Field(default_factory=RiskConfig)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
