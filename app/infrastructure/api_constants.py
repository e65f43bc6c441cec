"""
API endpoint constants and configuration.

This module contains all external API endpoint paths and related constants.
Centralizing these values makes it easy to swap out endpoints or update API versions.
"""


# WeatherAPI.com Endpoints
class WeatherAPIEndpoints:
    """WeatherAPI.com endpoint paths."""

    CURRENT = "/v1/current.json"


# OpenWeather Endpoints
class OpenWeatherEndpoints:
    """OpenWeather endpoint paths."""

    CURRENT = "/data/2.5/weather"


# Payout Relayer Endpoints
class LedgerEndpoints:
    """Payout relayer endpoint paths."""

    PAYOUTS = "/payouts"
    PAYOUT_BY_KEY = "/payouts/{claim_key}"

    @classmethod
    def get_payout(cls, claim_key: str) -> str:
        """
        Get the lookup endpoint for a payout.

        Args:
            claim_key: Claim key used as the idempotency key

        Returns:
            Formatted endpoint path
        """
        return cls.PAYOUT_BY_KEY.format(claim_key=claim_key)


# API Configuration Constants
class APIConstants:
    """General API configuration constants."""

    # HTTP Headers
    CONTENT_TYPE_JSON = "application/json"
    IDEMPOTENCY_KEY_HEADER = "Idempotency-Key"

    # Timeouts (in seconds)
    DEFAULT_TIMEOUT = 30.0
    WEATHER_TIMEOUT = 10.0

    # Unit conversion
    MPS_TO_KPH = 3.6
