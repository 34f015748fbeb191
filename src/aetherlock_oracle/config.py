"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a required setting is missing, the app fails fast with a
clear error message.

Usage:
    from aetherlock_oracle.config import get_settings
    settings = get_settings()
    print(settings.solana_rpc_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the AetherLock verification oracle."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Evidence storage (Pinata / IPFS) ---
    pinata_api_url: str = "https://api.pinata.cloud"
    pinata_jwt: SecretStr = SecretStr("")
    ipfs_gateway: str = "gateway.pinata.cloud"
    evidence_max_total_bytes: int = 10 * 1024 * 1024  # 10 MiB aggregate
    evidence_max_files: int = 10
    evidence_upload_timeout_seconds: float = 60.0

    # --- LLM / LiteLLM ---
    # Supports any LiteLLM-compatible model string.
    # For Bedrock Claude: "bedrock/anthropic.claude-3-sonnet-20240229-v1:0"
    # For Gemini: set GEMINI_API_KEY and use "gemini/gemini-2.0-flash"
    anthropic_api_key: str = ""
    gemini_api_key: str = ""
    openai_api_key: str = ""
    litellm_model: str = "gemini/gemini-2.0-flash"
    litellm_fallback_models: str = ""
    litellm_max_tokens: int = 1000
    litellm_temperature: float = 0.0
    adjudication_timeout_seconds: float = 60.0

    # --- Attestation signing key ---
    # Base58 64-byte Ed25519 secret, or a Solana CLI keypair file.
    ai_agent_private_key: SecretStr = SecretStr("")
    ai_agent_keypair_path: str = ""

    # --- Chain (Solana escrow program) ---
    solana_rpc_url: str = "https://api.devnet.solana.com"
    escrow_program_id: str = "11111111111111111111111111111111"
    chain_payer_private_key: SecretStr = SecretStr("")
    protocol_treasury: str = "11111111111111111111111111111111"
    chain_confirmation_timeout_seconds: float = 60.0
    protocol_fee_bps: int = 200
    dispute_window_seconds: int = 48 * 60 * 60

    # --- Verification pipeline ---
    pipeline_max_attempts: int = 3
    pipeline_retry_base_seconds: float = 1.0
    single_flight_backend: Literal["local", "redis"] = "local"
    single_flight_ttl_seconds: int = 900

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"

    # --- Gateway records database ---
    database_url: str = "sqlite+aiosqlite:///./gateway.db"
    db_echo_sql: bool = False

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def litellm_fallback_model_list(self) -> list[str]:
        """Parse comma-separated fallback models into a list."""
        if not self.litellm_fallback_models:
            return []
        return [m.strip() for m in self.litellm_fallback_models.split(",") if m.strip()]

    @property
    def uses_redis(self) -> bool:
        return self.single_flight_backend == "redis"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
