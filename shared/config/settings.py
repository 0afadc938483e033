"""
Configuration management using Pydantic Settings
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class RpcSettings(BaseSettings):
    """Chain RPC (transaction/log source) configuration"""

    rpc_url: str = Field(default="https://api.devnet.solana.com", description="JSON-RPC endpoint")
    program_id: str = Field(
        default="Drvrseg8AQLP8B96DBGmHRjFGviFNYTkHueY9g3k27Gu",
        description="Derivatives protocol program id"
    )
    page_size: int = Field(default=100, ge=1, le=1000, description="Signatures per page")
    request_timeout: int = Field(default=30, description="Request timeout in seconds")
    max_attempts: int = Field(default=5, ge=1, description="HTTP attempts per RPC request")
    transaction_attempts: int = Field(
        default=2,
        ge=1,
        description="Fetches of one transaction before it is skipped; each runs up to max_attempts HTTP "
                    "attempts, so a transaction costs at most max_attempts * transaction_attempts requests"
    )
    backoff_min: float = Field(default=0.5, description="Minimum backoff in seconds")
    backoff_max: float = Field(default=8.0, description="Maximum backoff in seconds")

    model_config = SettingsConfigDict(env_prefix="RPC_")


class PriceSettings(BaseSettings):
    """Mark price source configuration"""

    price_api_url: str = Field(
        default="https://api.coingecko.com/api/v3",
        description="Price API base URL"
    )
    request_timeout: int = Field(default=10, description="Request timeout in seconds")
    max_attempts: int = Field(default=3, ge=1, description="Attempts per price batch")
    cache_ttl: float = Field(default=60.0, description="Seconds a cached price is served without refetching")
    max_stale: float = Field(default=600.0, description="Oldest cached price usable when the source fails")

    symbol_ids: dict[str, str] = Field(
        default={
            "SOL-USDC": "solana",
            "SOL-USDC-V2": "solana",
            "BTC-USDC": "bitcoin",
        },
        description="Market symbol to price-API asset id"
    )

    model_config = SettingsConfigDict(env_prefix="PRICE_")


class SyncSettings(BaseSettings):
    """Synchronization and accounting configuration"""

    default_limit: int = Field(default=100, ge=1, description="Signatures fetched per sync")
    close_epsilon: float = Field(default=1e-6, description="Net size below which a position is closed")
    flat_epsilon: float = Field(default=1e-9, description="Threshold for omitting flat positions from PnL")
    serialize_wallets: bool = Field(default=True, description="Serialize concurrent syncs per wallet")

    model_config = SettingsConfigDict(env_prefix="SYNC_")


class StoreSettings(BaseSettings):
    """Persistence configuration"""

    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/perpledger.db",
        description="Async SQLAlchemy database URL"
    )
    echo_sql: bool = Field(default=False, description="Log emitted SQL")

    model_config = SettingsConfigDict(env_prefix="STORE_")


class Settings(BaseSettings):
    """Main application settings"""

    app_name: str = Field(default="PerpLedger", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="development", description="Environment")

    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[str] = Field(default="logs/perpledger.log", description="Log file path")

    # Sub-configurations
    rpc: RpcSettings = Field(default_factory=RpcSettings)
    price: PriceSettings = Field(default_factory=PriceSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore"
    )


# Global settings instance
settings = Settings()
