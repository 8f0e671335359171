"""Canonical configuration surface for Veil services."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, List, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class VeilSettings(BaseSettings):
    """Main Veil configuration.

    Built once at startup and handed to every component that needs it.
    """

    model_config = SettingsConfigDict(
        env_prefix="VEIL_",
        env_file=".env",
        extra="ignore",
    )

    # Environment
    environment: Literal["dev", "sandbox", "prod"] = "dev"
    log_level: str = "INFO"
    json_logs: bool = False

    # CORS - allowed origins for the storefront
    allowed_origins: Annotated[List[str], NoDecode] = Field(default_factory=lambda: [
        "http://localhost:5173",
        "http://localhost:3000",
    ])

    # Security
    secret_key: str = ""
    credential_ttl_seconds: int = 24 * 60 * 60
    nonce_ttl_seconds: int = 5 * 60

    # Storage - one backend, chosen here and injected everywhere
    storage_backend: Literal["file", "postgres"] = "file"
    database_url: str = ""
    data_file: str = "./data/veil.json"

    # External ledger
    chain_mode: Literal["simulated", "live"] = "simulated"
    rpc_url: str = "https://api.explorer.provable.com/v1"
    network: str = "testnet"
    program_id: str = "veilreceipt_v3.aleo"
    rpc_timeout_seconds: float = 15.0

    # Confirmation polling
    confirm_timeout_seconds: float = 120.0
    confirm_interval_seconds: float = 5.0
    confirm_max_timeout_seconds: float = 300.0

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_origins(cls, v):
        """Parse comma-separated origins from env var."""
        if isinstance(v, str):
            return [o.strip() for o in v.split(",") if o.strip()]
        return v

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str, info) -> str:
        env = info.data.get("environment", "dev")
        if env != "dev" and (not v or len(v) < 32):
            raise ValueError(
                "VEIL_SECRET_KEY must be at least 32 characters outside dev. "
                "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
            )
        return v or "dev-only-secret-key-not-for-production"

    @model_validator(mode="after")
    def check_storage(self) -> "VeilSettings":
        if self.storage_backend == "postgres":
            if not self.database_url.startswith(("postgresql://", "postgres://")):
                raise ValueError(
                    "storage_backend=postgres requires a postgresql:// database_url"
                )
        if self.confirm_interval_seconds <= 0:
            raise ValueError("confirm_interval_seconds must be positive")
        return self

    @property
    def is_dev(self) -> bool:
        return self.environment == "dev"


@lru_cache
def load_settings(env_file: str | None = None) -> VeilSettings:
    """Load VeilSettings once per process to keep services consistent."""
    env_path = Path(env_file) if env_file else None
    return VeilSettings(_env_file=env_path)
