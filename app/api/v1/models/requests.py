"""
API request models using Pydantic.
"""
from typing import Optional
from pydantic import BaseModel, Field

from app.domain.models import Location, Observation, ThresholdConfig


class RegisterFarmerRequest(BaseModel):
    """Request model for registering a farmer."""
    name: str = Field(min_length=1, max_length=100)
    wallet_address: str = Field(
        pattern=r"^0x[a-fA-F0-9]{40}$",
        description="Farmer wallet that receives payouts",
    )
    location: Location
    weather_thresholds: ThresholdConfig = Field(default_factory=ThresholdConfig)
    coverage_amount: float = Field(default=0, ge=0, description="Maximum payout per claim")
    premium_amount: float = Field(default=0, ge=0)
    register_insurance: bool = Field(
        default=True,
        description="Activate the insurance policy immediately"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Amina Njoroge",
                "wallet_address": "0x" + "ab" * 20,
                "location": {"latitude": -1.2921, "longitude": 36.8219},
                "weather_thresholds": {
                    "rainfall": {"min": 50},
                    "temperature": {"max": 35},
                },
                "coverage_amount": 1000,
            }
        }


class SettleRequest(BaseModel):
    """Optional observation to settle against instead of fetching live weather."""
    observation: Optional[Observation] = None


class RejectClaimRequest(BaseModel):
    """Request model for administratively rejecting a claim."""
    reviewed_by: str = Field(min_length=1)
    notes: str = Field(default="", max_length=1000)
