"""Application configuration."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # CoinGecko
    coingecko_api_key: str = ""
    coingecko_use_pro_api: bool = False

    # Minimum seconds between consecutive requests to the same provider
    crypto_request_interval: float = 2.1
    equity_request_interval: float = 0.35
    http_timeout: float = 30.0

    # Caching
    search_cache_ttl_seconds: int = 86400

    # Valuation
    default_period: int = 90
    usd_to_ars_rate: float = 1000.0
    max_valuators: int = 1000

    # Application
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )


settings = Settings()
