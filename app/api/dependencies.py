"""
Dependency injection for FastAPI.
"""
from typing import Annotated, Optional
from fastapi import Depends

from app.infrastructure.ledger_client import get_ledger_client
from app.infrastructure.repositories import (
    ClaimRepository,
    FarmerRepository,
    ObservationRepository,
    get_claim_repository,
    get_farmer_repository,
    get_observation_repository,
)
from app.infrastructure.weather_client import (
    FallbackWeatherProvider,
    get_weather_provider,
)
from app.services.application.claim_settlement import ClaimSettlementCoordinator
from app.services.application.weather_monitor import WeatherMonitor


# The coordinator owns the per-farmer locks, so it must be shared
_coordinator: Optional[ClaimSettlementCoordinator] = None
_weather_monitor: Optional[WeatherMonitor] = None


def get_coordinator() -> ClaimSettlementCoordinator:
    """
    Dependency factory for ClaimSettlementCoordinator.

    Returns:
        Shared ClaimSettlementCoordinator instance
    """
    global _coordinator
    if _coordinator is None:
        _coordinator = ClaimSettlementCoordinator(
            claim_repository=get_claim_repository(),
            farmer_repository=get_farmer_repository(),
            ledger=get_ledger_client(),
        )
    return _coordinator


def get_weather_monitor() -> WeatherMonitor:
    """
    Factory for the background WeatherMonitor.

    Returns:
        Shared WeatherMonitor instance
    """
    global _weather_monitor
    if _weather_monitor is None:
        _weather_monitor = WeatherMonitor(
            farmer_repository=get_farmer_repository(),
            weather_provider=get_weather_provider(),
            coordinator=get_coordinator(),
            observation_repository=get_observation_repository(),
        )
    return _weather_monitor


# Type aliases for cleaner route signatures
ClaimRepositoryDep = Annotated[ClaimRepository, Depends(get_claim_repository)]
FarmerRepositoryDep = Annotated[FarmerRepository, Depends(get_farmer_repository)]
ObservationRepositoryDep = Annotated[ObservationRepository, Depends(get_observation_repository)]
WeatherProviderDep = Annotated[FallbackWeatherProvider, Depends(get_weather_provider)]
CoordinatorDep = Annotated[ClaimSettlementCoordinator, Depends(get_coordinator)]
