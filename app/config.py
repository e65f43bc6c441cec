"""
Application configuration using Pydantic settings.
"""
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Weather Provider Configuration
    weather_api_base_url: str = Field(
        default="https://api.weatherapi.com",
        description="Base URL for WeatherAPI.com (primary weather source)"
    )
    weather_api_key: str = Field(
        default="",
        description="API key for WeatherAPI.com"
    )
    openweather_base_url: str = Field(
        default="https://api.openweathermap.org",
        description="Base URL for OpenWeather (fallback weather source)"
    )
    openweather_api_key: str = Field(
        default="",
        description="API key for OpenWeather"
    )

    # Ledger / Payout Relayer Configuration
    ledger_api_base_url: str = Field(
        default="http://localhost:8545",
        description="Base URL of the payout relayer that submits on-chain transfers"
    )
    ledger_api_key: str = Field(
        default="",
        description="API key for the payout relayer"
    )

    # Retry Configuration
    max_retry_attempts: int = Field(
        default=3,
        description="Maximum number of retry attempts for API calls"
    )
    retry_backoff_multiplier: int = Field(
        default=1,
        description="Multiplier for exponential backoff"
    )
    retry_min_wait: int = Field(
        default=4,
        description="Minimum wait time in seconds between retries"
    )
    retry_max_wait: int = Field(
        default=10,
        description="Maximum wait time in seconds between retries"
    )

    # Payout Parameters
    payout_share_per_metric: float = Field(
        default=0.25,
        description="Fraction of coverage paid out per breached weather metric"
    )
    payout_currency: str = Field(
        default="cUSD",
        description="Currency of claim payouts"
    )
    processing_fee: float = Field(
        default=0.0,
        description="Flat processing fee deducted from each payout"
    )
    max_transfer_attempts: int = Field(
        default=3,
        description="Transfer attempts per claim before a retryable failure becomes terminal"
    )

    # Severity Parameters
    severity_critical_deviation: float = Field(
        default=0.5,
        description="Fractional deviation beyond a bound above which a breach is critical"
    )
    severity_severe_deviation: float = Field(
        default=0.2,
        description="Fractional deviation beyond a bound above which a breach is severe"
    )

    # Weather Monitoring
    monitor_enabled: bool = Field(
        default=False,
        description="Whether to run the periodic weather monitor on startup"
    )
    monitor_interval_seconds: int = Field(
        default=1800,
        description="Seconds between weather monitoring passes"
    )
    monitor_concurrency: int = Field(
        default=4,
        description="Maximum number of farmers settled in parallel during a pass"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    # CORS Configuration
    cors_origins: list[str] = Field(
        default=["*"],
        description="Allowed CORS origins (use specific origins in production)"
    )

    # Rate Limiting
    rate_limit_requests: int = Field(
        default=100,
        description="Maximum requests per minute per client"
    )

    # Application Settings
    app_name: str = Field(
        default="WeatherShield Payouts",
        description="Application name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    debug: bool = Field(
        default=False,
        description="Debug mode"
    )

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
