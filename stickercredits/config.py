"""Environment-driven settings for the credits core.

Values are read from ``STICKERCREDITS_*`` environment variables and an optional
``.env`` file. Components take explicit arguments as well, so nothing below is
required for in-process use.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


RefundMode = Literal["credit_grant", "linked"]


class Settings(BaseSettings):
    """Typed view of runtime configuration."""

    service_name: str = "stickercredits"
    log_level: str = "INFO"
    signup_credits: int = Field(default=10, ge=0)
    refund_mode: RefundMode = "credit_grant"
    receipt_verifier_url: Optional[str] = None
    receipt_verifier_api_key: Optional[str] = None
    receipt_verifier_timeout: float = Field(default=10.0, gt=0)
    expiry_sweep_interval_seconds: float = Field(default=3600.0, gt=0)
    enable_expiry_sweeper: bool = False

    model_config = SettingsConfigDict(
        env_prefix="STICKERCREDITS_",
        env_file=".env",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, loaded once."""
    return Settings()
