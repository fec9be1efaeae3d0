"""Application configuration management."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AnyHttpUrl, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from buytracker.models import Network


class Settings(BaseSettings):
    """Runtime configuration loaded from environment or `.env`."""

    model_config = SettingsConfigDict(
        env_file=(".env",),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    telegram_bot_token: str = Field(..., alias="TELEGRAM_BOT_TOKEN")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./.tmp/buytracker.db",
        alias="DATABASE_URL",
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(default=None, alias="LOG_FILE")

    bnb_rpc_url: str = Field(
        default="https://bsc-dataseed.binance.org/", alias="BNB_RPC_URL"
    )
    solana_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", alias="SOLANA_RPC_URL"
    )
    bnb_explorer: str = Field(default="https://bscscan.com/tx/", alias="BNB_EXPLORER")
    solana_explorer: str = Field(
        default="https://solscan.io/tx/", alias="SOLANA_EXPLORER"
    )
    dexscreener_api: str = Field(
        default="https://api.dexscreener.com/latest/dex/tokens",
        alias="DEXSCREENER_API",
    )
    http_timeout_seconds: float = Field(
        default=8.0, alias="HTTP_TIMEOUT_SECONDS", gt=0, le=60
    )

    min_buy_usd: float = Field(default=5.0, alias="MIN_BUY_USD", ge=0)
    feed_poll_seconds: int = Field(
        default=30, alias="FEED_POLL_SECONDS", ge=1, le=600
    )
    feed_max_failures: int = Field(default=5, alias="FEED_MAX_FAILURES", ge=1, le=100)

    simulation_probability: float = Field(
        default=0.3,
        alias="SIMULATION_PROBABILITY",
        ge=0.0,
        le=1.0,
    )
    bnb_price_usd: float = Field(default=535.0, alias="BNB_PRICE_USD", gt=0)
    sol_price_usd: float = Field(default=120.0, alias="SOL_PRICE_USD", gt=0)

    default_image_url: Optional[AnyHttpUrl] = Field(
        default=None,
        alias="DEFAULT_IMAGE_URL",
    )
    admin_user_ids: Annotated[List[int], NoDecode] = Field(
        default_factory=list, alias="ADMIN_USER_IDS"
    )

    @field_validator("admin_user_ids", mode="before")
    @classmethod
    def _parse_admin_ids(cls, value: Any) -> List[int]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            return [int(part.strip()) for part in value.split(",") if part.strip()]
        if isinstance(value, (list, tuple, set)):
            return [int(v) for v in value]
        return [int(value)]

    @property
    def explorer_urls(self) -> Dict[Network, str]:
        return {
            Network.BNB: self.bnb_explorer,
            Network.SOLANA: self.solana_explorer,
        }

    @property
    def rpc_urls(self) -> Dict[Network, str]:
        return {
            Network.BNB: self.bnb_rpc_url,
            Network.SOLANA: self.solana_rpc_url,
        }

    @property
    def native_prices_usd(self) -> Dict[Network, float]:
        return {
            Network.BNB: self.bnb_price_usd,
            Network.SOLANA: self.sol_price_usd,
        }


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Return cached Settings instance, raising a helpful message on failure."""
    try:
        return Settings()
    except (
        ValidationError
    ) as exc:  # pragma: no cover - configuration failure visible on boot
        raise RuntimeError(f"Invalid configuration: {exc}") from exc


__all__ = ["Settings", "load_settings"]
