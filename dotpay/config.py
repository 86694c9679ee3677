from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]

# Funding network per DOTPAY_NETWORK: (chain id, USDC contract)
USDC_NETWORKS = {
    "mainnet": (42161, "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"),  # Arbitrum One
    "sepolia": (421614, "0x75faf114eafb1BDbe2F0316DF893fd58CE46AA4d"),  # Arbitrum Sepolia
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Normalize URLs and fill the funding chain from the selected network."""

        super().model_post_init(__context)

        object.__setattr__(self, "dotpay_api_url", self.dotpay_api_url.strip().rstrip("/"))
        prefix = "/" + self.mpesa_api_prefix.strip().strip("/")
        object.__setattr__(self, "mpesa_api_prefix", prefix)

        network_chain_id, network_usdc = USDC_NETWORKS[self.dotpay_network]
        if self.chain_id is None:
            object.__setattr__(self, "chain_id", network_chain_id)
        if not self.usdc_address:
            object.__setattr__(self, "usdc_address", network_usdc)

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Payments backend
    dotpay_api_url: str = Field(
        default="",
        description="Base URL of the payments backend",
        validation_alias=AliasChoices("dotpay_api_url", "NEXT_PUBLIC_DOTPAY_API_URL"),
    )
    mpesa_api_prefix: str = Field(default="/api/mpesa", description="Path prefix of the M-Pesa API")
    request_timeout_seconds: float = Field(default=30.0, description="Transport timeout for backend calls")

    # Backend token
    backend_jwt_secret: str = Field(
        default="",
        description="HS256 secret used to mint short-lived backend tokens",
        validation_alias=AliasChoices("backend_jwt_secret", "DOTPAY_BACKEND_JWT_SECRET"),
    )
    backend_token_ttl_seconds: int = Field(default=300, ge=60, description="Backend token lifetime")
    backend_token_url: str = Field(
        default="",
        description="Endpoint that issues backend tokens to remote clients",
    )
    session_secret: str = Field(
        default="",
        description="Secret used to verify wallet session tokens",
        validation_alias=AliasChoices("session_secret", "DOTPAY_SESSION_SECRET"),
    )

    # On-chain funding
    dotpay_network: Literal["mainnet", "sepolia"] = Field(
        default="mainnet",
        description="Arbitrum network that funds payments",
        validation_alias=AliasChoices("dotpay_network", "NEXT_PUBLIC_DOTPAY_NETWORK"),
    )
    chain_id: Optional[int] = Field(default=None, description="Override the chain derived from dotpay_network")
    rpc_url: str = Field(default="", description="JSON-RPC endpoint for the active chain")
    usdc_address: str = Field(
        default="",
        description="Fallback USDC contract when a quote omits the token address; derived from dotpay_network when empty",
    )
    confirmation_timeout_seconds: int = Field(default=300, ge=1, description="Max wait for a funding receipt")
    required_confirmations: int = Field(default=1, ge=1, description="Confirmations needed for funding")
    confirmation_poll_interval_seconds: float = Field(default=2.0, gt=0, description="Receipt poll interval")

    # Status polling
    poll_interval_seconds: float = Field(default=3.5, gt=0, description="Transaction status poll interval")
    poll_timeout_seconds: float = Field(default=120.0, gt=0, description="Give up polling after this long")

    # Authorization
    pin_length: int = Field(default=6, ge=4, le=8, description="Digits in the app PIN")
    default_account_reference: str = Field(default="DotPay", description="Till reference when none is given")
    enforce_quote_expiry: bool = Field(
        default=False,
        description="Reject expired quotes locally instead of leaving it to the backend",
    )

    @property
    def has_backend_url(self) -> bool:
        return bool(self.dotpay_api_url)

    @property
    def has_jwt_secret(self) -> bool:
        return bool(self.backend_jwt_secret.strip())

    @property
    def mpesa_base_url(self) -> Optional[str]:
        """Absolute base URL of the M-Pesa API, or None when no backend is configured."""
        if not self.dotpay_api_url:
            return None
        return f"{self.dotpay_api_url}{self.mpesa_api_prefix}"


# Global settings instance
settings = Settings()
