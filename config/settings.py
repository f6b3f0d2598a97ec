"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Upstream API credentials
    neynar_api_key: Optional[str] = None
    github_token: Optional[str] = None

    # Upstream base URLs
    neynar_base_url: str = "https://api.neynar.com"
    bsky_base_url: str = "https://public.api.bsky.app"
    github_api_url: str = "https://api.github.com"
    github_raw_url: str = "https://raw.githubusercontent.com"

    # Rate limiting (Neynar Starter plan: 300 RPM per endpoint, 500 RPM global)
    rate_limit_endpoint_ceiling: int = 250
    rate_limit_global_ceiling: int = 450
    rate_limit_window_seconds: float = 60.0
    rate_limit_buffer_seconds: float = 0.1

    # Cache settings
    identifier_ttl_seconds: int = 300
    estimate_ttl_seconds: int = 60
    cache_max_entries: int = 10000

    # Aggregation
    parent_batch_size: int = 25

    # Timeouts
    request_timeout_seconds: float = 30.0
    fetch_deadline_seconds: float = 255.0

    # Payment (x402)
    payment_enabled: bool = True
    pay_to_address: str = "0x0000000000000000000000000000000000000000"
    payment_network: str = "base-sepolia"
    payment_asset: str = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
    facilitator_url: str = "https://x402.org/facilitator"

    # Client SDK
    llm_txt_api_url: str = "https://api.llm-fid.fun"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
