"""
API router for farmer endpoints.
"""
from datetime import datetime, timezone
from typing import Annotated, Optional
from fastapi import APIRouter, HTTPException, Path, Query, status

from app.api.dependencies import (
    CoordinatorDep,
    FarmerRepositoryDep,
    ObservationRepositoryDep,
    WeatherProviderDep,
)
from app.api.v1.models.requests import RegisterFarmerRequest, SettleRequest
from app.api.v1.models.responses import (
    SettlementResponse,
    WeatherHistoryResponse,
    WeatherStatsResponse,
)
from app.domain.models import (
    Farmer,
    InsuranceDetails,
    PolicyStatus,
    ThresholdConfig,
    utcnow,
)
from app.infrastructure.repositories import FarmerNotFoundError


router = APIRouter(
    prefix="/farmers",
    tags=["farmers"],
)

FarmerIdPath = Annotated[str, Path(description="Unique identifier for the farmer")]
StartQuery = Annotated[Optional[datetime], Query(description="Only observations at or after this time")]
EndQuery = Annotated[Optional[datetime], Query(description="Only observations at or before this time")]


async def _load_farmer(farmers, farmer_id: str) -> Farmer:
    try:
        return await farmers.get_farmer(farmer_id)
    except FarmerNotFoundError:
        raise HTTPException(
            status_code=404,
            detail=f"Farmer with ID '{farmer_id}' not found"
        )


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _check_period(start: Optional[datetime], end: Optional[datetime]):
    if start is not None and end is not None and start >= end:
        raise HTTPException(
            status_code=400,
            detail="Start date must be before end date"
        )


@router.post(
    "",
    response_model=Farmer,
    status_code=status.HTTP_201_CREATED,
    summary="Register a farmer",
    responses={
        400: {"description": "Invalid farmer data or wallet already registered"},
        429: {"description": "Rate limit exceeded"},
    },
)
async def register_farmer(
    body: RegisterFarmerRequest,
    farmers: FarmerRepositoryDep,
) -> Farmer:
    """
    Register a farmer and, optionally, activate their policy.

    Args:
        body: Farmer details
        farmers: Farmer repository (injected dependency)

    Returns:
        The stored farmer
    """
    insurance = InsuranceDetails(
        is_registered=body.register_insurance,
        premium_amount=body.premium_amount,
        coverage_amount=body.coverage_amount,
        policy_status=PolicyStatus.ACTIVE if body.register_insurance else PolicyStatus.INACTIVE,
        registration_date=utcnow() if body.register_insurance else None,
    )
    farmer = Farmer(
        name=body.name,
        wallet_address=body.wallet_address,
        location=body.location,
        weather_thresholds=body.weather_thresholds,
        insurance=insurance,
    )
    return await farmers.add_farmer(farmer)


@router.get(
    "/{farmer_id}",
    response_model=Farmer,
    summary="Get a farmer",
    responses={404: {"description": "Farmer not found"}},
)
async def get_farmer(
    farmer_id: FarmerIdPath,
    farmers: FarmerRepositoryDep,
) -> Farmer:
    """
    Get a farmer by id.

    Args:
        farmer_id: Unique identifier for the farmer
        farmers: Farmer repository (injected dependency)

    Returns:
        The farmer
    """
    return await _load_farmer(farmers, farmer_id)


@router.put(
    "/{farmer_id}/weather-thresholds",
    response_model=Farmer,
    summary="Update weather thresholds",
    responses={
        404: {"description": "Farmer not found"},
        422: {"description": "Invalid thresholds (e.g. min above max)"},
    },
)
async def update_weather_thresholds(
    farmer_id: FarmerIdPath,
    thresholds: ThresholdConfig,
    farmers: FarmerRepositoryDep,
) -> Farmer:
    """
    Replace a farmer's weather thresholds.

    Args:
        farmer_id: Unique identifier for the farmer
        thresholds: New threshold configuration
        farmers: Farmer repository (injected dependency)

    Returns:
        The updated farmer
    """
    try:
        return await farmers.update_thresholds(farmer_id, thresholds)
    except FarmerNotFoundError:
        raise HTTPException(
            status_code=404,
            detail=f"Farmer with ID '{farmer_id}' not found"
        )


@router.post(
    "/{farmer_id}/settle",
    response_model=SettlementResponse,
    summary="Evaluate weather and settle a claim",
    description="""
    Evaluate the farmer's thresholds against a weather observation and
    settle any resulting claim.

    When no observation is supplied, the latest reading for the farm is
    fetched from the weather provider. Settling the same observation twice
    returns the existing claim without a second transfer.
    """,
    responses={
        400: {"description": "Farmer has no usable policy"},
        404: {"description": "Farmer not found"},
        429: {"description": "Rate limit exceeded"},
        502: {"description": "Weather provider unavailable"},
    },
)
async def settle_farmer(
    farmer_id: FarmerIdPath,
    farmers: FarmerRepositoryDep,
    coordinator: CoordinatorDep,
    weather_provider: WeatherProviderDep,
    observations: ObservationRepositoryDep,
    body: Optional[SettleRequest] = None,
) -> SettlementResponse:
    """
    Settle a claim for a farmer.

    Args:
        farmer_id: Unique identifier for the farmer
        farmers: Farmer repository (injected dependency)
        coordinator: Settlement coordinator (injected dependency)
        weather_provider: Weather provider (injected dependency)
        observations: Weather history (injected dependency)
        body: Optional observation to use instead of live weather

    Returns:
        SettlementResponse describing the outcome
    """
    farmer = await _load_farmer(farmers, farmer_id)

    observation = body.observation if body is not None else None
    if observation is None:
        observation = await weather_provider.fetch_observation(
            farmer.location.latitude,
            farmer.location.longitude,
        )
    await observations.record(farmer.id, observation)

    # Delegate to service layer (no business logic here)
    outcome = await coordinator.settle(farmer, observation)

    return SettlementResponse(
        farmer_id=farmer.id,
        outcome=outcome.kind,
        duplicate=outcome.duplicate,
        reason=outcome.reason,
        claim=outcome.claim,
    )


@router.get(
    "/{farmer_id}/weather/history",
    response_model=WeatherHistoryResponse,
    summary="Recorded weather history",
    responses={
        400: {"description": "Start is not before end"},
        404: {"description": "Farmer not found"},
    },
)
async def weather_history(
    farmer_id: FarmerIdPath,
    farmers: FarmerRepositoryDep,
    observations: ObservationRepositoryDep,
    start: StartQuery = None,
    end: EndQuery = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> WeatherHistoryResponse:
    """
    List observations recorded for a farmer, newest first.

    Naive datetimes are read as UTC.
    """
    start, end = _as_utc(start), _as_utc(end)
    _check_period(start, end)
    farmer = await _load_farmer(farmers, farmer_id)

    items = await observations.history(farmer.id, start=start, end=end, limit=limit)
    return WeatherHistoryResponse(farmer_id=farmer.id, observations=items, count=len(items))


@router.get(
    "/{farmer_id}/weather/stats",
    response_model=WeatherStatsResponse,
    summary="Weather statistics",
    responses={
        400: {"description": "Start is not before end"},
        404: {"description": "Farmer not found"},
    },
)
async def weather_stats(
    farmer_id: FarmerIdPath,
    farmers: FarmerRepositoryDep,
    observations: ObservationRepositoryDep,
    start: StartQuery = None,
    end: EndQuery = None,
) -> WeatherStatsResponse:
    """
    Aggregate the observations recorded for a farmer over a period.

    Args:
        farmer_id: Unique identifier for the farmer
        farmers: Farmer repository (injected dependency)
        observations: Weather history (injected dependency)
        start: Optional period start
        end: Optional period end

    Returns:
        WeatherStatsResponse; all figures are zero when nothing was recorded
    """
    start, end = _as_utc(start), _as_utc(end)
    _check_period(start, end)
    farmer = await _load_farmer(farmers, farmer_id)

    stats = await observations.stats(farmer.id, start=start, end=end)
    return WeatherStatsResponse(farmer_id=farmer.id, start=start, end=end, stats=stats)
