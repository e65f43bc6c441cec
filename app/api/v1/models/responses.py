"""
API response models using Pydantic.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from app.domain.models import Claim, Observation
from app.domain.outcomes import OutcomeKind
from app.infrastructure.repositories import TimelineBucket, WeatherStats


class Pagination(BaseModel):
    """Pagination metadata for list endpoints."""
    current_page: int
    total_pages: int
    total_claims: int
    has_next: bool
    has_prev: bool


class ClaimListResponse(BaseModel):
    """Response model for the claims list endpoint."""
    claims: List[Claim] = Field(
        description="Claims on the requested page, newest first"
    )
    pagination: Pagination


class SettlementResponse(BaseModel):
    """Response model for a settlement request."""
    farmer_id: str = Field(
        description="Unique identifier for the farmer"
    )
    outcome: OutcomeKind = Field(
        description="Whether a claim was created for the observation"
    )
    duplicate: bool = Field(
        default=False,
        description="True when the claim for this observation already existed"
    )
    reason: Optional[str] = Field(
        default=None,
        description="Why no claim was created"
    )
    claim: Optional[Claim] = None

    class Config:
        json_schema_extra = {
            "example": {
                "farmer_id": "5f0c7e3a9b8d4c2e",
                "outcome": "no_claim",
                "duplicate": False,
                "reason": "No threshold breached",
                "claim": None,
            }
        }


class WeatherHistoryResponse(BaseModel):
    """Response model for a farmer's recorded observations."""
    farmer_id: str
    observations: List[Observation] = Field(
        description="Recorded observations, newest first"
    )
    count: int


class WeatherStatsResponse(BaseModel):
    """Response model for weather aggregates over a period."""
    farmer_id: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    stats: WeatherStats

    class Config:
        json_schema_extra = {
            "example": {
                "farmer_id": "5f0c7e3a9b8d4c2e",
                "start": "2024-03-01T00:00:00Z",
                "end": "2024-03-31T23:59:59Z",
                "stats": {
                    "count": 62,
                    "avg_temperature": 27.4,
                    "min_temperature": 18.1,
                    "max_temperature": 36.2,
                    "total_rainfall": 41.5,
                    "avg_humidity": 64.3,
                    "avg_wind_speed": 12.8,
                    "max_wind_speed": 44.0,
                },
            }
        }


class ClaimTimelineResponse(BaseModel):
    """Response model for claim counts per month and status."""
    timeline: List[TimelineBucket]
    months: int = Field(description="Number of calendar months covered")
    start: datetime
    end: datetime
