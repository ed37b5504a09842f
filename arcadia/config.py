"""
Arcadia Configuration Management
Uses pydantic-settings for type-safe environment variable loading
"""

from typing import Literal
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class ArcadiaConfig(BaseSettings):
    """Configuration for the Arcadia payments API"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Configuration
    arcadia_host: str = Field(default="0.0.0.0", description="Host to bind the server to")
    arcadia_port: int = Field(default=8000, description="Port to bind the server to")
    public_base_url: str = Field(default="http://localhost:8000", description="Externally visible base URL")

    # Network Configuration
    network: Literal["scroll-sepolia", "scroll", "local"] = Field(default="scroll-sepolia")
    rpc_url: str = Field(default="https://sepolia-rpc.scroll.io")
    chain_mode: Literal["simulated", "web3"] = Field(
        default="simulated",
        description="simulated runs the escrow contract in-process, web3 talks to a real RPC"
    )

    # Escrow Contract
    escrow_contract_address: str = Field(
        default="0x00000000000000000000000000000000a4c4d1a0",
        description="Deployed escrow contract address"
    )
    treasury_address: str = Field(
        default="0x000000000000000000000000000000000000beef",
        description="Wallet that receives forwarded payments"
    )
    contract_owner_address: str = Field(
        default="0x000000000000000000000000000000000000a11c",
        description="Owner of the escrow contract (admin setters)"
    )
    payment_currency: str = Field(default="ETH")

    # Tier prices in wei, used by the simulated contract at deploy time
    basic_price_wei: int = Field(default=5_000_000_000_000_000)
    premium_price_wei: int = Field(default=10_000_000_000_000_000)
    enterprise_price_wei: int = Field(default=25_000_000_000_000_000)

    # Payment Request Lifecycle
    payment_expiry_seconds: int = Field(default=24 * 60 * 60, description="Standard request expiry")
    quick_payment_expiry_seconds: int = Field(default=30 * 60, description="Expiry for the quick checkout flow")
    refund_window_seconds: int = Field(default=24 * 60 * 60)
    refunds_enabled: bool = Field(default=True, description="Disable when the treasury does not pre-fund refunds")
    payment_base_url: str = Field(default="https://api.x402.protocol/payments")
    merchant_id: str = Field(default="")

    # Escrow Administration
    escrow_admin_private_key: str = Field(default="", description="Owner key for admin contract calls (web3 mode)")

    # Webhooks
    x402_webhook_secret: str = Field(default="", description="Shared secret for webhook HMAC signatures")
    webhook_tolerance_seconds: int = Field(default=300, description="Maximum webhook age before it is treated as a replay")

    # Downstream Generation
    generation_url: str = Field(default="http://localhost:3000/api/briefs/generate")
    internal_api_key: str = Field(default="")
    generation_timeout: float = Field(default=30.0)
    generation_stale_seconds: int = Field(
        default=600, description="In-flight generation claims older than this are retried by maintenance"
    )

    # Status Polling
    polling_interval_seconds: float = Field(default=3.0)
    polling_max_duration_seconds: float = Field(default=300.0)

    # Maintenance
    maintenance_interval_seconds: int = Field(default=60)

    # Persistence
    store_backend: Literal["memory", "supabase"] = Field(default="memory")
    supabase_url: str = Field(default="")
    supabase_key: str = Field(default="")

    # Rate Limiting
    rate_limit_enabled: bool = Field(default=True)

    # CORS Configuration
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")

    # Development
    debug: bool = Field(default=False)
    reload: bool = Field(default=False)

    @field_validator("escrow_contract_address", "treasury_address", "contract_owner_address")
    @classmethod
    def validate_address(cls, v):
        if not v.startswith("0x") or len(v) != 42:
            raise ValueError("Invalid Ethereum address format")
        return v.lower()

    @field_validator("escrow_admin_private_key")
    @classmethod
    def validate_private_key(cls, v):
        if v and not v.startswith("0x"):
            return f"0x{v}"
        return v

    @field_validator("basic_price_wei", "premium_price_wei", "enterprise_price_wei")
    @classmethod
    def validate_price(cls, v):
        if v <= 0:
            raise ValueError("Tier price must be positive")
        return v

    def default_tier_prices(self) -> dict:
        """Tier prices keyed by tier name"""
        return {
            "BASIC": self.basic_price_wei,
            "PREMIUM": self.premium_price_wei,
            "ENTERPRISE": self.enterprise_price_wei,
        }


# Singleton instance
_config: ArcadiaConfig | None = None


def get_config() -> ArcadiaConfig:
    """Get or create configuration singleton"""
    global _config
    if _config is None:
        _config = ArcadiaConfig()
    return _config


def reset_config() -> None:
    """Drop the cached configuration (used when the environment changes)"""
    global _config
    _config = None
