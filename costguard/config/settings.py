"""Configuration management for CostGuard."""

from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from costguard.core.guard import EnforcementMode, validate_limit
from costguard.core.ledger import DEFAULT_SHARED_KEY, DEFAULT_SHARED_TTL_SECONDS
from costguard.core.refresh import DEFAULT_CACHE_FILE, DEFAULT_CACHE_TTL_SECONDS


class Settings(BaseSettings):
    """Configuration settings for CostGuard.

    Every field can be set from the environment with the COSTGUARD_ prefix
    (COSTGUARD_LIMIT=5, COSTGUARD_MODE=hard_exit, ...) or from a .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="COSTGUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Budget settings
    limit: float = Field(
        default=10.0,
        description="Budget ceiling in dollars (inf = unlimited)"
    )
    mode: EnforcementMode = Field(
        default=EnforcementMode.SOFT,
        description="Action on trip: soft, hard_exit or warn_only"
    )
    enabled: bool = Field(
        default=True,
        description="Master switch for attribution and enforcement"
    )

    # Notification and display
    webhook: Optional[str] = Field(
        default=None,
        description="Webhook URL notified when the budget trips"
    )
    webhook_timeout: float = Field(
        default=5.0,
        description="Webhook request timeout in seconds"
    )
    silent: bool = Field(
        default=False,
        description="Suppress the cost readout and trip summary"
    )
    privacy: bool = Field(
        default=False,
        description="Record '[REDACTED]' instead of content excerpts in call logs"
    )

    # Shared ledger (Redis)
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for a budget shared between processes (None = local). "
                    "Also accepted as 'redis' or 'shared_ledger_address'."
    )
    shared_key: str = Field(
        default=DEFAULT_SHARED_KEY,
        description="Redis key of the shared budget counter"
    )
    shared_ttl_seconds: int = Field(
        default=DEFAULT_SHARED_TTL_SECONDS,
        description="Expiry refreshed on every shared increment"
    )

    # Pricing
    token_estimation_mode: str = Field(
        default="tiktoken",
        description="Token estimation mode: 'tiktoken' or 'heuristic'"
    )
    pricing_file_path: Optional[str] = Field(
        default=None,
        description="Path to pricing JSON file (None = use bundled table)"
    )
    price_cache_path: str = Field(
        default=DEFAULT_CACHE_FILE,
        description="Local price cache file"
    )
    price_cache_ttl_seconds: float = Field(
        default=DEFAULT_CACHE_TTL_SECONDS,
        description="Price cache freshness window"
    )
    price_source_url: Optional[str] = Field(
        default=None,
        description="Remote price table URL (None = cache only)"
    )
    refresh_prices_on_start: bool = Field(
        default=True,
        description="Refresh prices when the guard starts"
    )

    # Hard exit
    exit_code: int = Field(
        default=1,
        description="Process exit status in hard_exit mode"
    )
    exit_delay: float = Field(
        default=0.1,
        description="Seconds allowed for output to flush before exiting"
    )

    @model_validator(mode="before")
    @classmethod
    def _redis_aliases(cls, data):
        if isinstance(data, dict):
            for alias in ("redis", "shared_ledger_address"):
                value = data.get(alias)
                if value and not data.get("redis_url"):
                    data = {**data, "redis_url": value}
        return data

    @field_validator("limit", mode="before")
    @classmethod
    def _check_limit(cls, value: Any) -> float:
        return validate_limit(value)

    @field_validator("mode", mode="before")
    @classmethod
    def _parse_mode(cls, value):
        return EnforcementMode.parse(value)

    @field_validator("token_estimation_mode")
    @classmethod
    def _check_estimation_mode(cls, value: str) -> str:
        if value not in ("tiktoken", "heuristic"):
            raise ValueError("token_estimation_mode must be 'tiktoken' or 'heuristic'")
        return value

    @classmethod
    def load_from_file(cls, config_file: str) -> "Settings":
        """Load settings from a YAML config file.

        Args:
            config_file: Path to YAML config file

        Returns:
            Settings instance
        """
        import yaml

        with open(config_file, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    def get_price_cache_path(self) -> Path:
        """Price cache path with ~ expanded."""
        return Path(self.price_cache_path).expanduser()
