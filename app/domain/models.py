"""
Domain models for farmers, weather observations and claims.

These models represent the core domain entities and should be independent
of any infrastructure concerns (API clients, databases, etc.).
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Metric(str, Enum):
    """Weather metrics a farmer can put thresholds on."""
    TEMPERATURE = "temperature"
    RAINFALL = "rainfall"
    HUMIDITY = "humidity"
    WIND_SPEED = "wind_speed"


METRIC_LABELS: Dict[Metric, str] = {
    Metric.TEMPERATURE: "Temperature",
    Metric.RAINFALL: "Rainfall",
    Metric.HUMIDITY: "Humidity",
    Metric.WIND_SPEED: "Wind speed",
}


class Severity(str, Enum):
    NORMAL = "normal"
    MODERATE = "moderate"
    SEVERE = "severe"
    CRITICAL = "critical"


# ============================================================
# Thresholds
# ============================================================

class MetricBounds(BaseModel):
    """Optional lower/upper bound for a single metric."""
    min: Optional[float] = None
    max: Optional[float] = None

    @model_validator(mode="after")
    def check_order(self) -> "MetricBounds":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"min ({self.min}) must not exceed max ({self.max})")
        return self

    @property
    def is_empty(self) -> bool:
        return self.min is None and self.max is None


class UpperBound(MetricBounds):
    """Bounds for metrics that only have a ceiling (wind speed)."""

    @model_validator(mode="after")
    def check_no_min(self) -> "UpperBound":
        if self.min is not None:
            raise ValueError("wind_speed only supports a max bound")
        return self


class ThresholdConfig(BaseModel):
    """Per-farmer weather thresholds. Absent metrics are not evaluated."""
    temperature: Optional[MetricBounds] = None
    rainfall: Optional[MetricBounds] = None
    humidity: Optional[MetricBounds] = None
    wind_speed: Optional[UpperBound] = None

    def bounds_for(self, metric: Metric) -> Optional[MetricBounds]:
        return getattr(self, metric.value)


# ============================================================
# Weather observations
# ============================================================

class TemperatureReading(BaseModel):
    """Temperature in degrees celsius."""
    current: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None

    class Config:
        frozen = True


def rain_intensity(rainfall_mm: float) -> str:
    """
    Classify rainfall into an intensity band.

    Args:
        rainfall_mm: Rainfall in millimetres

    Returns:
        One of light, moderate, heavy, very_heavy
    """
    if rainfall_mm < 2.5:
        return "light"
    if rainfall_mm < 10:
        return "moderate"
    if rainfall_mm < 50:
        return "heavy"
    return "very_heavy"


class Observation(BaseModel):
    """
    A single immutable weather reading for a location.

    Every measurement is optional; metrics the provider did not report
    are skipped by the evaluator rather than treated as zero.
    """
    id: Optional[str] = Field(
        default=None,
        description="Provider-stable identifier of the reading"
    )
    timestamp: datetime
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    temperature: TemperatureReading = Field(default_factory=TemperatureReading)
    humidity: Optional[float] = Field(default=None, description="Relative humidity in %")
    rainfall: Optional[float] = Field(default=None, description="Rainfall in mm")
    wind_speed: Optional[float] = Field(default=None, description="Wind speed in km/h")
    source: str = "manual"
    confidence: float = Field(default=0.8, ge=0, le=1)

    class Config:
        frozen = True

    @property
    def rainfall_intensity(self) -> Optional[str]:
        if self.rainfall is None:
            return None
        return rain_intensity(self.rainfall)

    def value_for(self, metric: Metric) -> Optional[float]:
        if metric is Metric.TEMPERATURE:
            return self.temperature.current
        return getattr(self, metric.value)


class BreachResult(BaseModel):
    """Evaluation result for one metric."""
    exceeded: bool
    value: float
    severity: Severity
    threshold: MetricBounds
    deviation: Optional[float] = Field(
        default=None,
        description="Fractional deviation beyond the violated bound (None when zero bound or no breach)"
    )


# ============================================================
# Farmers and policies
# ============================================================

class PolicyStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class InsuranceDetails(BaseModel):
    is_registered: bool = False
    premium_amount: float = Field(default=0, ge=0)
    coverage_amount: float = Field(default=0, ge=0)
    policy_status: PolicyStatus = PolicyStatus.INACTIVE
    registration_date: Optional[datetime] = None


class Location(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: Optional[str] = None


class Farmer(BaseModel):
    """A registered farmer and their insurance configuration."""
    id: str = Field(default_factory=lambda: uuid4().hex)
    name: str = Field(min_length=1, max_length=100)
    wallet_address: str = Field(pattern=r"^0x[a-fA-F0-9]{40}$")
    location: Location
    weather_thresholds: ThresholdConfig = Field(default_factory=ThresholdConfig)
    insurance: InsuranceDetails = Field(default_factory=InsuranceDetails)
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("wallet_address")
    @classmethod
    def normalize_wallet(cls, value: str) -> str:
        return value.lower()

    @property
    def is_eligible_for_payout(self) -> bool:
        return (
            self.is_active
            and self.insurance.is_registered
            and self.insurance.policy_status == PolicyStatus.ACTIVE
        )


class Policy(BaseModel):
    """Read-only view of a farmer's cover used by the payout calculator."""
    farmer_id: str
    coverage_amount: float
    active: bool


# ============================================================
# Claims
# ============================================================

class ClaimStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REJECTED = "rejected"


ALLOWED_TRANSITIONS: Dict[ClaimStatus, set] = {
    ClaimStatus.PENDING: {
        ClaimStatus.PENDING,
        ClaimStatus.PAID,
        ClaimStatus.FAILED,
        ClaimStatus.REJECTED,
    },
    ClaimStatus.PAID: set(),
    ClaimStatus.FAILED: set(),
    ClaimStatus.REJECTED: set(),
}


class InvalidClaimTransitionError(Exception):
    """Raised when a claim status change would violate the lifecycle."""
    pass


class Claim(BaseModel):
    """
    A parametric insurance claim.

    Created once per (farmer, triggering observation) in ``pending`` and
    driven to ``paid``, ``failed`` or ``rejected``.
    """
    id: str = Field(default_factory=lambda: uuid4().hex)
    claim_key: str
    farmer_id: str
    wallet_address: str
    observation: Observation
    breaches: Dict[Metric, BreachResult]
    payout_amount: float = Field(ge=0)
    multiplier: float = Field(ge=0, le=1)
    currency: str = "cUSD"
    processing_fee: float = Field(default=0, ge=0)
    net_payout: float = Field(default=0, ge=0)
    status: ClaimStatus = ClaimStatus.PENDING
    status_history: List[ClaimStatus] = Field(
        default_factory=lambda: [ClaimStatus.PENDING]
    )
    triggered_by: str = "automatic"
    trigger_reason: str
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    transfer_attempts: int = 0
    last_error: Optional[str] = None
    failure_reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = Field(default=None, max_length=1000)
    reviewed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def compute_net_payout(self) -> "Claim":
        self.net_payout = max(round(self.payout_amount - self.processing_fee, 2), 0.0)
        return self

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.status]

    def can_transition(self, new_status: ClaimStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self.status]

    def transition(self, new_status: ClaimStatus, **details) -> "Claim":
        """
        Return a copy of the claim moved to ``new_status``.

        Args:
            new_status: Target status
            **details: Additional fields to set on the copy

        Returns:
            Updated claim copy

        Raises:
            InvalidClaimTransitionError: If the lifecycle forbids the change
        """
        if not self.can_transition(new_status):
            raise InvalidClaimTransitionError(
                f"Claim {self.id} cannot move from {self.status.value} to {new_status.value}"
            )
        history = list(self.status_history)
        if new_status != self.status:
            history.append(new_status)
        update = dict(details)
        update.update(status=new_status, status_history=history, updated_at=utcnow())
        return self.model_copy(update=update, deep=True)
