"""Configuration models for catalog-client.

All models use Pydantic v2.
"""

from __future__ import annotations

from typing import Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from catalog_client.endpoints import ENDPOINTS

DEFAULT_SERVICE = "AWSECommerceService"
DEFAULT_VERSION = "2009-11-01"
DEFAULT_USER_AGENT = "catalog-client/0.8.1"


# =============================================================================
# Runtime Configuration Models
# =============================================================================


class CacheConfig(BaseModel):
    """Response body cache settings."""

    model_config = ConfigDict(extra="forbid")

    directory: str = Field(description="Directory holding cached bodies (~ is expanded)")
    max_age_seconds: float | None = Field(
        default=None, gt=0, description="Entries older than this are refetched"
    )


class ClientConfig(BaseModel):
    """Top-level client configuration file structure."""

    model_config = ConfigDict(extra="forbid")

    locale: str = Field(default="us", description="Selects the service endpoint")
    key_id: str | None = Field(default=None, description="Access key id sent as AWSAccessKeyId")
    secret_key: str | None = Field(
        default=None, description="Secret key; requests are signed when set"
    )
    associate: str | None = Field(default=None, description="Associate tag sent as AssociateTag")
    encoding: str | None = Field(
        default=None, description="Charset that bytes parameter values are decoded from"
    )
    service: str = Field(default=DEFAULT_SERVICE, description="Service parameter")
    version: str = Field(default=DEFAULT_VERSION, description="API version parameter")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent header")
    timeout: float = Field(default=30.0, gt=0, description="Connect/read timeout in seconds")
    max_retries: int | None = Field(
        default=5,
        ge=0,
        description="Retries after transient network failures; None retries forever",
    )
    retry_backoff: float = Field(
        default=0.5, ge=0, description="Initial backoff between retries in seconds"
    )
    retry_backoff_max: float = Field(default=8.0, ge=0, description="Backoff ceiling in seconds")
    deadline: float | None = Field(
        default=None, gt=0, description="Give up retrying after this many seconds"
    )
    requests_per_second: float | None = Field(
        default=None, gt=0, description="Client-side rate limit; None disables it"
    )
    cache: CacheConfig | None = Field(default=None, description="Body cache settings")

    @field_validator("locale")
    @classmethod
    def validate_locale(cls, v: str) -> str:
        if v not in ENDPOINTS:
            available = ", ".join(sorted(ENDPOINTS))
            raise ValueError(f"unknown locale '{v}' (available: {available})")
        return v

    @model_validator(mode="after")
    def check_backoff(self) -> Self:
        if self.retry_backoff > self.retry_backoff_max:
            raise ValueError("retry_backoff cannot exceed retry_backoff_max")
        return self
