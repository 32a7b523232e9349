"""Application configuration using pydantic-settings.

All knobs of the swap pipeline (aggregator, RPC, fees, confirmation) are
read from the environment or a local .env file.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

Commitment = Literal["processed", "confirmed", "finalized"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=4000, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level when debug is off")

    # ======================
    # Aggregator
    # ======================
    jupiter_api_url: str = Field(
        default="https://quote-api.jup.ag/v6", description="Jupiter swap API base URL"
    )
    jupiter_api_key: str = Field(default="", description="Optional Jupiter API key")
    default_slippage_bps: int = Field(
        default=50, ge=0, le=10_000, description="Slippage used when the client sends none"
    )
    dynamic_compute_unit_limit: bool = Field(
        default=True, description="Let the aggregator size the compute unit limit"
    )
    wrap_and_unwrap_sol: bool = Field(
        default=True, description="Let the aggregator wrap/unwrap native SOL inside the swap"
    )

    # ======================
    # Solana RPC
    # ======================
    solana_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", description="Primary Solana RPC URL"
    )
    solana_backup_rpc_url: Optional[str] = Field(
        default=None, description="Backup RPC used by the token account submission path"
    )
    commitment: Commitment = Field(default="confirmed", description="Finality level to wait for")

    # ======================
    # Execution
    # ======================
    priority_fee_micro_lamports: int = Field(
        default=50_000, ge=0, description="Compute unit price added to every swap"
    )
    send_max_retries: int = Field(
        default=2, ge=0, description="RPC-side rebroadcast budget for swap transactions"
    )
    token_account_max_retries: int = Field(
        default=5, ge=0, description="RPC-side rebroadcast budget for account creation"
    )
    confirm_poll_interval: float = Field(
        default=1.0, gt=0, description="Seconds between confirmation polls"
    )
    http_timeout: float = Field(default=30.0, gt=0, description="Outbound HTTP timeout (seconds)")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "aggregator": {
                "url": self.jupiter_api_url,
                "api_key": "***" if self.jupiter_api_key else "(not set)",
                "default_slippage_bps": self.default_slippage_bps,
            },
            "rpc": {
                "primary": self._redact_url(self.solana_rpc_url),
                "backup": self._redact_url(self.solana_backup_rpc_url)
                if self.solana_backup_rpc_url
                else "(not set)",
                "commitment": self.commitment,
            },
            "execution": {
                "priority_fee_micro_lamports": self.priority_fee_micro_lamports,
                "send_max_retries": self.send_max_retries,
                "token_account_max_retries": self.token_account_max_retries,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact API keys carried in RPC URLs (query string or credentials)."""
        if "?" in url:
            url = url.split("?", 1)[0] + "?***"
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            _, host = rest.rsplit("@", 1)
            return f"{proto}://***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
