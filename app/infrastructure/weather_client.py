"""
Infrastructure layer: Weather provider clients.

WeatherAPI.com is the primary source and OpenWeather the fallback. Both
responses are normalized into the domain ``Observation``.
"""
from datetime import datetime, timezone
from typing import List, Optional
import logging

from pydantic import BaseModel, Field, ValidationError

from app.config import settings
from app.domain.models import Observation, TemperatureReading
from app.infrastructure.api_constants import (
    APIConstants,
    OpenWeatherEndpoints,
    WeatherAPIEndpoints,
)
from app.infrastructure.external_api_client import ExternalAPIClient, ExternalAPIError

logger = logging.getLogger(__name__)


class WeatherProviderError(Exception):
    """Raised when no weather source could supply an observation."""
    pass


def observation_id(source: str, latitude: float, longitude: float, epoch: int) -> str:
    """Stable identifier for a provider reading; refetches map to the same id."""
    return f"{source}:{latitude:.4f},{longitude:.4f}:{epoch}"


# Pydantic models for WeatherAPI.com responses
class WeatherAPICurrent(BaseModel):
    """``current`` block of a WeatherAPI.com response."""
    last_updated_epoch: int
    temp_c: Optional[float] = None
    humidity: Optional[float] = None
    precip_mm: Optional[float] = None
    wind_kph: Optional[float] = None


class WeatherAPIResponse(BaseModel):
    """Response from the current.json endpoint."""
    current: WeatherAPICurrent


# Pydantic models for OpenWeather responses
class OpenWeatherMain(BaseModel):
    temp: Optional[float] = None
    temp_min: Optional[float] = None
    temp_max: Optional[float] = None
    humidity: Optional[float] = None


class OpenWeatherWind(BaseModel):
    speed: Optional[float] = Field(default=None, description="Wind speed in m/s")


class OpenWeatherRain(BaseModel):
    one_hour: Optional[float] = Field(default=None, alias="1h")

    class Config:
        populate_by_name = True


class OpenWeatherResponse(BaseModel):
    """Response from the data/2.5/weather endpoint."""
    dt: int
    main: OpenWeatherMain = Field(default_factory=OpenWeatherMain)
    wind: OpenWeatherWind = Field(default_factory=OpenWeatherWind)
    rain: Optional[OpenWeatherRain] = None


class WeatherAPIClient(ExternalAPIClient):
    """Client for WeatherAPI.com current conditions."""

    source = "weatherapi"
    confidence = 0.95

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None):
        super().__init__(
            base_url=base_url or settings.weather_api_base_url,
            params={"key": api_key if api_key is not None else settings.weather_api_key},
            timeout=APIConstants.WEATHER_TIMEOUT,
        )

    async def fetch_observation(self, latitude: float, longitude: float) -> Observation:
        """
        Fetch current conditions for a coordinate.

        Args:
            latitude: Latitude in degrees
            longitude: Longitude in degrees

        Returns:
            Normalized Observation

        Raises:
            ExternalAPIError: If the request fails or the payload is malformed
        """
        data = await self.request(
            "GET",
            WeatherAPIEndpoints.CURRENT,
            params={"q": f"{latitude},{longitude}", "aqi": "no"},
        )
        try:
            response = WeatherAPIResponse(**data)
        except (ValidationError, TypeError) as e:
            raise ExternalAPIError(f"Malformed WeatherAPI response: {e}")

        current = response.current
        return Observation(
            id=observation_id(self.source, latitude, longitude, current.last_updated_epoch),
            timestamp=datetime.fromtimestamp(current.last_updated_epoch, tz=timezone.utc),
            latitude=latitude,
            longitude=longitude,
            temperature=TemperatureReading(current=current.temp_c),
            humidity=current.humidity,
            rainfall=current.precip_mm,
            wind_speed=current.wind_kph,
            source=self.source,
            confidence=self.confidence,
        )


class OpenWeatherClient(ExternalAPIClient):
    """Client for OpenWeather current conditions."""

    source = "openweather"
    confidence = 0.9

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None):
        super().__init__(
            base_url=base_url or settings.openweather_base_url,
            params={"appid": api_key if api_key is not None else settings.openweather_api_key},
            timeout=APIConstants.WEATHER_TIMEOUT,
        )

    async def fetch_observation(self, latitude: float, longitude: float) -> Observation:
        """
        Fetch current conditions for a coordinate.

        Args:
            latitude: Latitude in degrees
            longitude: Longitude in degrees

        Returns:
            Normalized Observation (wind converted to km/h)

        Raises:
            ExternalAPIError: If the request fails or the payload is malformed
        """
        data = await self.request(
            "GET",
            OpenWeatherEndpoints.CURRENT,
            params={"lat": latitude, "lon": longitude, "units": "metric"},
        )
        try:
            response = OpenWeatherResponse(**data)
        except (ValidationError, TypeError) as e:
            raise ExternalAPIError(f"Malformed OpenWeather response: {e}")

        wind_speed = None
        if response.wind.speed is not None:
            wind_speed = response.wind.speed * APIConstants.MPS_TO_KPH

        # OpenWeather omits the rain block when it is dry
        rainfall = 0.0
        if response.rain is not None and response.rain.one_hour is not None:
            rainfall = response.rain.one_hour

        return Observation(
            id=observation_id(self.source, latitude, longitude, response.dt),
            timestamp=datetime.fromtimestamp(response.dt, tz=timezone.utc),
            latitude=latitude,
            longitude=longitude,
            temperature=TemperatureReading(
                current=response.main.temp,
                min=response.main.temp_min,
                max=response.main.temp_max,
            ),
            humidity=response.main.humidity,
            rainfall=rainfall,
            wind_speed=wind_speed,
            source=self.source,
            confidence=self.confidence,
        )


class FallbackWeatherProvider:
    """
    Weather provider trying each source in order until one succeeds.
    """

    def __init__(self, sources: List[ExternalAPIClient]):
        """
        Initialize the provider.

        Args:
            sources: Clients exposing ``fetch_observation``, in priority order
        """
        self.sources = sources

    async def fetch_observation(self, latitude: float, longitude: float) -> Observation:
        """
        Fetch an observation from the first source that answers.

        Args:
            latitude: Latitude in degrees
            longitude: Longitude in degrees

        Returns:
            Normalized Observation

        Raises:
            WeatherProviderError: If every source fails
        """
        errors = []
        for source in self.sources:
            try:
                return await source.fetch_observation(latitude, longitude)
            except ExternalAPIError as e:
                name = getattr(source, "source", type(source).__name__)
                logger.warning(f"Weather source {name} failed, trying next: {e.message}")
                errors.append(f"{name}: {e.message}")

        raise WeatherProviderError(
            f"All weather sources failed for ({latitude}, {longitude}): " + "; ".join(errors)
        )

    async def close(self):
        """Close every source client."""
        for source in self.sources:
            await source.close()


# Singleton instance
_weather_provider: Optional[FallbackWeatherProvider] = None


def get_weather_provider() -> FallbackWeatherProvider:
    """
    Get or create the singleton weather provider.

    Returns:
        FallbackWeatherProvider instance
    """
    global _weather_provider
    if _weather_provider is None:
        _weather_provider = FallbackWeatherProvider(
            [WeatherAPIClient(), OpenWeatherClient()]
        )
    return _weather_provider
