"""Application configuration management using Pydantic Settings."""

from typing import Dict, List
from decimal import Decimal
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./offramp.db"

    # API
    API_V1_PREFIX: str = "/api"

    # CORS
    CORS_ORIGINS: List[str] = ['http://localhost:3000']

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Bridge provider (LayerSwap)
    LAYERSWAP_API_URL: str = "https://api.layerswap.io/api/v2"
    LAYERSWAP_API_KEY: str = ""
    LAYERSWAP_SOURCE_NETWORK: str = "STARKNET_MAINNET"
    LAYERSWAP_DESTINATION_NETWORK: str = "BASE_MAINNET"

    # Payout provider (Paycrest)
    PAYCREST_API_URL: str = "https://api.paycrest.io/v1"
    PAYCREST_API_KEY: str = ""
    PAYCREST_WEBHOOK_SECRET: str = ""
    PAYCREST_NETWORK: str = "base"

    # Gas sponsorship on the source chain (AVNU paymaster)
    AVNU_API_URL: str = "https://starknet.api.avnu.fi"
    AVNU_API_KEY: str = ""
    GASLESS_GAS_TOKEN_ADDRESS: str = "0x053c91253bc9682c04929ca02ed00b3e423f6710d2ee7e0d5ebb06f3ecf368a8"  # Starknet USDC
    GASLESS_MAX_GAS_TOKEN_AMOUNT: int = 500000  # 0.5 USDC in base units

    # Settlement chain (Base)
    WEB3_RPC_URL: str = "https://mainnet.base.org"
    SETTLEMENT_CHAIN_ID: int = 8453
    SETTLEMENT_PRIVATE_KEY: str = ""  # Settlement hot wallet (SECURE! Use vault in production)
    SETTLEMENT_RETURN_ADDRESS: str = ""  # Refund address handed to the payout provider
    SETTLEMENT_TOKEN_ADDRESSES: Dict[str, str] = {
        "USDC": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        "USDT": "0xfde4C96c8593536E31F229EA8f37b2ADa2699bb2",
        "DAI": "0x50c5725949A6F0c72E6C4a641F24049A917DB0Cb",
    }
    MIN_CONFIRMATIONS: int = 1
    SETTLEMENT_CONFIRMATION_TIMEOUT: int = 120  # Seconds to wait for a receipt
    SETTLEMENT_GAS_LIMIT: int = 100000

    # Saga timing
    BRIDGE_POLL_INTERVAL: float = 5.0
    BRIDGE_POLL_TIMEOUT: float = 300.0
    PAYOUT_POLL_INTERVAL: float = 10.0
    PAYOUT_POLL_TIMEOUT: float = 600.0
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY: float = 1.0
    PROVIDER_HTTP_TIMEOUT: float = 30.0

    # Resolve the bank account before any on-chain action
    VERIFY_RECIPIENT_ACCOUNT: bool = True

    # Largest tolerated gap between the preview and the priced fiat amount before logging a warning
    PREVIEW_DRIFT_WARNING: Decimal = Decimal("0.02")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v) -> List[str]:
        """Parse CORS_ORIGINS from JSON string to list."""
        if isinstance(v, str):
            return json.loads(v)
        return v

    @field_validator("SETTLEMENT_TOKEN_ADDRESSES", mode="before")
    @classmethod
    def parse_token_addresses(cls, v) -> Dict[str, str]:
        """Parse SETTLEMENT_TOKEN_ADDRESSES from a JSON object string."""
        if isinstance(v, str):
            v = json.loads(v)
        return {symbol.upper(): address for symbol, address in v.items()}

    @field_validator("PREVIEW_DRIFT_WARNING", mode="before")
    @classmethod
    def parse_decimal(cls, v) -> Decimal:
        """Parse string to Decimal for precise arithmetic."""
        if isinstance(v, str):
            return Decimal(v)
        return v


# Global settings instance
settings = Settings()
