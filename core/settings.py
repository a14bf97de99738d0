"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so the gateway layer can be configured
(and overridden in tests) without touching application settings.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 5.0
    read: float = 30.0
    write: float = 10.0
    total: float = 30.0  # upper bound for one remote call, enforced by the orchestrator


class PaymentRetry(BaseModel):
    # Applies to connection errors on follow-up operations only
    max: int = 2
    base_backoff: float = 0.2


class SettlementSettings(BaseModel):
    window_hours: float = 24.0

    @property
    def window(self) -> timedelta:
        return timedelta(hours=self.window_hours)


class IdempotencySettings(BaseModel):
    window_minutes: int = 60

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.window_minutes)


class ClaimSettings(BaseModel):
    # A claim older than this is treated as left behind by a crashed worker
    stale_after_seconds: float = 300.0

    @property
    def stale_after(self) -> timedelta:
        return timedelta(seconds=self.stale_after_seconds)


class AuthorizeNetSettings(BaseModel):
    api_login_id: Optional[str] = None
    transaction_key: Optional[str] = None
    environment: Literal["Sandbox", "Production"] = "Sandbox"
    sandbox_endpoint: str = "https://apitest.authorize.net/xml/v1/request.api"
    production_endpoint: str = "https://api.authorize.net/xml/v1/request.api"

    @property
    def endpoint(self) -> str:
        if self.environment == "Production":
            return self.production_endpoint
        return self.sandbox_endpoint

    @property
    def configured(self) -> bool:
        return bool(self.api_login_id and self.transaction_key)


class PaymentSettings(BaseSettings):
    provider: Literal["authorize_net", "sandbox"] = "sandbox"
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    settlement: SettlementSettings = Field(default_factory=SettlementSettings)
    idempotency: IdempotencySettings = Field(default_factory=IdempotencySettings)
    claim: ClaimSettings = Field(default_factory=ClaimSettings)

    authorize_net: AuthorizeNetSettings = Field(default_factory=AuthorizeNetSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
