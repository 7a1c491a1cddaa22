"""
Configuration management using Pydantic Settings.
Values come from the environment (or .env) and are validated at startup.
"""

import re
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class ConfigurationError(RuntimeError):
    """Settings required to run the oracle are missing or invalid."""


def _check_address(value: str) -> str:
    if not _ADDRESS_RE.match(value):
        raise ValueError(f"Invalid address: {value}")
    return value


class PriceFeedConfig(BaseModel):
    """A token priced through a Chainlink aggregator."""
    address: str
    price_feed_address: str
    symbol: str = ""

    @field_validator("address", "price_feed_address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return _check_address(v)


class Settings(BaseSettings):
    """Oracle settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===================
    # Chain Configuration
    # ===================
    rpc_url: str = Field(
        default="https://ethereum-sepolia-rpc.publicnode.com",
        description="JSON-RPC endpoint of the chain hosting the module"
    )
    chain_id: int = Field(default=11155111, description="Chain ID used when signing updates")
    module_address: Optional[str] = Field(default=None, description="DeFiInteractorModule address")
    private_key: Optional[str] = Field(default=None, description="Updater key (hex) allowed to call batchUpdate")

    # ===================
    # Scheduling
    # ===================
    poll_interval_seconds: float = Field(default=10.0, gt=0, description="Event polling interval")
    refresh_interval_seconds: float = Field(default=300.0, gt=0, description="Full refresh interval")
    blocks_to_look_back: int = Field(default=7200, ge=1, description="Initial polling lookback; state queries use twice this")

    # ===================
    # Limits
    # ===================
    window_duration_seconds: int = Field(default=86400, ge=1, description="Fallback rolling window")
    default_max_spending_bps: int = Field(default=500, ge=0, le=10000, description="Fallback spending limit")
    allowance_change_threshold_bps: int = Field(
        default=0,
        ge=0,
        le=10000,
        description="Relative allowance change required before a write (0 = any change)"
    )

    # ===================
    # Transactions
    # ===================
    gas_limit: int = Field(default=500000, ge=21000)
    confirmation_timeout_seconds: float = Field(default=120.0, gt=0)

    # ===================
    # Pricing
    # ===================
    price_feeds: list[PriceFeedConfig] = Field(
        default_factory=list,
        description="JSON list of {address, price_feed_address, symbol}"
    )

    # ===================
    # Logging
    # ===================
    log_level: str = Field(default="INFO")

    @field_validator("module_address")
    @classmethod
    def validate_module_address(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        return _check_address(v)

    @field_validator("private_key")
    @classmethod
    def validate_private_key(cls, v: Optional[str]) -> Optional[str]:
        """Accept keys with or without 0x; must be 32 bytes of hex."""
        if v is None or v == "":
            return None
        if not v.startswith("0x"):
            v = "0x" + v
        try:
            raw = bytes.fromhex(v[2:])
        except ValueError:
            raise ValueError("Private key must be hex")
        if len(raw) != 32:
            raise ValueError("Private key must be 32 bytes")
        return v

    def validate_runtime(self) -> None:
        """Raise ConfigurationError if the service cannot run with these settings."""
        if not self.private_key:
            raise ConfigurationError("PRIVATE_KEY environment variable is required")
        if not self.module_address:
            raise ConfigurationError("MODULE_ADDRESS environment variable is required")

    @property
    def state_lookback_blocks(self) -> int:
        """Block range replayed per sub-account."""
        return self.blocks_to_look_back * 2


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
