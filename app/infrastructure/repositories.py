"""
Infrastructure layer: Claim, farmer and observation persistence.

The abstract repositories define the contract the settlement engine relies
on. The in-memory implementations enforce the same constraints a database
adapter must: claim keys are unique among non-failed claims, and claim
status changes follow the claim lifecycle.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional
import asyncio
import logging

from pydantic import BaseModel, Field

from app.domain.models import (
    Claim,
    ClaimStatus,
    Farmer,
    Observation,
    Policy,
    ThresholdConfig,
)

logger = logging.getLogger(__name__)


class ClaimNotFoundError(Exception):
    """Raised when a claim id does not exist."""
    pass


class FarmerNotFoundError(Exception):
    """Raised when a farmer id does not exist."""
    pass


class DuplicateClaimError(Exception):
    """Raised when a non-failed claim already exists for a claim key."""
    pass


class DuplicateFarmerError(ValueError):
    """Raised when a wallet address is already registered."""
    pass


class StatusTotals(BaseModel):
    count: int = 0
    total_amount: float = 0.0


class ClaimSummary(BaseModel):
    """Aggregate payout figures for one farmer or for all claims."""
    total_paid_amount: float = 0.0
    paid_claims: int = 0
    average_payout: float = 0.0
    by_status: Dict[ClaimStatus, StatusTotals] = Field(default_factory=dict)


class TimelineBucket(BaseModel):
    """Claims created in one calendar month with one status."""
    year: int
    month: int = Field(ge=1, le=12)
    status: ClaimStatus
    count: int = 0
    total_amount: float = 0.0


class WeatherStats(BaseModel):
    """Aggregates over a farmer's recorded observations. All zero when none match."""
    count: int = 0
    avg_temperature: float = 0.0
    min_temperature: float = 0.0
    max_temperature: float = 0.0
    total_rainfall: float = 0.0
    avg_humidity: float = 0.0
    avg_wind_speed: float = 0.0
    max_wind_speed: float = 0.0


class ClaimRepository(ABC):
    """Persistence contract for claims."""

    @abstractmethod
    async def find_claim(self, claim_key: str) -> Optional[Claim]:
        """Return the non-failed claim for a key, else the latest failed one, else None."""

    @abstractmethod
    async def get_claim(self, claim_id: str) -> Claim:
        """Return a claim by id or raise ClaimNotFoundError."""

    @abstractmethod
    async def create_claim(self, claim: Claim) -> Claim:
        """Persist a new claim or raise DuplicateClaimError."""

    @abstractmethod
    async def update_claim_status(
        self,
        claim_id: str,
        status: ClaimStatus,
        details: Optional[dict] = None,
    ) -> Claim:
        """Move a claim to ``status`` and apply ``details``."""

    @abstractmethod
    async def find_by_status(self, status: ClaimStatus) -> List[Claim]:
        """Claims in a given status, oldest first."""

    @abstractmethod
    async def list_claims(
        self,
        farmer_id: Optional[str] = None,
        status: Optional[ClaimStatus] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> List[Claim]:
        """Claims matching the filters, newest first."""

    @abstractmethod
    async def count(
        self,
        farmer_id: Optional[str] = None,
        status: Optional[ClaimStatus] = None,
    ) -> int:
        """Number of claims matching the filters."""

    @abstractmethod
    async def summarize(self, farmer_id: Optional[str] = None) -> ClaimSummary:
        """Payout totals, optionally for one farmer."""

    @abstractmethod
    async def timeline(
        self,
        farmer_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[TimelineBucket]:
        """Claim counts and amounts per creation month and status, oldest month first."""


class FarmerRepository(ABC):
    """Persistence contract for farmers and their policies."""

    @abstractmethod
    async def add_farmer(self, farmer: Farmer) -> Farmer:
        """Persist a new farmer."""

    @abstractmethod
    async def get_farmer(self, farmer_id: str) -> Farmer:
        """Return a farmer by id or raise FarmerNotFoundError."""

    @abstractmethod
    async def update_thresholds(self, farmer_id: str, thresholds: ThresholdConfig) -> Farmer:
        """Replace a farmer's weather thresholds."""

    @abstractmethod
    async def list_eligible(self) -> List[Farmer]:
        """Farmers whose policy currently allows payouts."""

    @abstractmethod
    async def find_policy(self, farmer_id: str) -> Optional[Policy]:
        """The farmer's policy, or None for an unknown farmer."""


class ObservationRepository(ABC):
    """Persistence contract for the weather observations seen per farmer."""

    @abstractmethod
    async def record(self, farmer_id: str, observation: Observation) -> bool:
        """Store an observation. Returns False if its id was already recorded."""

    @abstractmethod
    async def latest(self, farmer_id: str) -> Optional[Observation]:
        """Most recent observation for a farmer, or None."""

    @abstractmethod
    async def history(
        self,
        farmer_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[Observation]:
        """Observations in ``[start, end]``, newest first."""

    @abstractmethod
    async def stats(
        self,
        farmer_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> WeatherStats:
        """Aggregates over observations in ``[start, end]``."""


class InMemoryClaimRepository(ClaimRepository):
    """Process-local claim store."""

    def __init__(self):
        self._claims: Dict[str, Claim] = {}
        self._active_keys: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def find_claim(self, claim_key: str) -> Optional[Claim]:
        claim_id = self._active_keys.get(claim_key)
        if claim_id is not None:
            return self._claims[claim_id].model_copy(deep=True)

        matches = [c for c in self._claims.values() if c.claim_key == claim_key]
        if not matches:
            return None
        return max(matches, key=lambda c: c.created_at).model_copy(deep=True)

    async def get_claim(self, claim_id: str) -> Claim:
        claim = self._claims.get(claim_id)
        if claim is None:
            raise ClaimNotFoundError(f"Claim {claim_id} not found")
        return claim.model_copy(deep=True)

    async def create_claim(self, claim: Claim) -> Claim:
        async with self._lock:
            if claim.claim_key in self._active_keys:
                raise DuplicateClaimError(
                    f"A claim already exists for key {claim.claim_key}"
                )
            stored = claim.model_copy(deep=True)
            self._claims[stored.id] = stored
            if stored.status != ClaimStatus.FAILED:
                self._active_keys[stored.claim_key] = stored.id

        logger.debug(f"Stored claim {stored.id} ({stored.claim_key})")
        return stored.model_copy(deep=True)

    async def update_claim_status(
        self,
        claim_id: str,
        status: ClaimStatus,
        details: Optional[dict] = None,
    ) -> Claim:
        async with self._lock:
            current = self._claims.get(claim_id)
            if current is None:
                raise ClaimNotFoundError(f"Claim {claim_id} not found")

            updated = current.transition(status, **(details or {}))
            self._claims[claim_id] = updated
            if status == ClaimStatus.FAILED:
                self._active_keys.pop(updated.claim_key, None)

        return updated.model_copy(deep=True)

    async def find_by_status(self, status: ClaimStatus) -> List[Claim]:
        claims = [c for c in self._claims.values() if c.status == status]
        claims.sort(key=lambda c: c.created_at)
        return [c.model_copy(deep=True) for c in claims]

    async def list_claims(
        self,
        farmer_id: Optional[str] = None,
        status: Optional[ClaimStatus] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> List[Claim]:
        claims = self._filter(farmer_id, status)
        claims.sort(key=lambda c: c.created_at, reverse=True)
        return [c.model_copy(deep=True) for c in claims[offset:offset + limit]]

    async def count(
        self,
        farmer_id: Optional[str] = None,
        status: Optional[ClaimStatus] = None,
    ) -> int:
        return len(self._filter(farmer_id, status))

    async def summarize(self, farmer_id: Optional[str] = None) -> ClaimSummary:
        summary = ClaimSummary()
        for claim in self._filter(farmer_id, None):
            totals = summary.by_status.setdefault(claim.status, StatusTotals())
            totals.count += 1
            totals.total_amount = round(totals.total_amount + claim.net_payout, 2)

        paid = summary.by_status.get(ClaimStatus.PAID)
        if paid is not None and paid.count:
            summary.total_paid_amount = paid.total_amount
            summary.paid_claims = paid.count
            summary.average_payout = round(paid.total_amount / paid.count, 2)
        return summary

    async def timeline(
        self,
        farmer_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[TimelineBucket]:
        buckets: Dict[tuple, TimelineBucket] = {}
        for claim in self._filter(farmer_id, None):
            if since is not None and claim.created_at < since:
                continue
            key = (claim.created_at.year, claim.created_at.month, claim.status)
            bucket = buckets.get(key)
            if bucket is None:
                bucket = buckets[key] = TimelineBucket(
                    year=key[0], month=key[1], status=key[2]
                )
            bucket.count += 1
            bucket.total_amount = round(bucket.total_amount + claim.payout_amount, 2)

        return sorted(buckets.values(), key=lambda b: (b.year, b.month, b.status.value))

    def _filter(
        self,
        farmer_id: Optional[str],
        status: Optional[ClaimStatus],
    ) -> List[Claim]:
        return [
            c for c in self._claims.values()
            if (farmer_id is None or c.farmer_id == farmer_id)
            and (status is None or c.status == status)
        ]


class InMemoryFarmerRepository(FarmerRepository):
    """Process-local farmer store."""

    def __init__(self):
        self._farmers: Dict[str, Farmer] = {}

    async def add_farmer(self, farmer: Farmer) -> Farmer:
        if any(f.wallet_address == farmer.wallet_address for f in self._farmers.values()):
            raise DuplicateFarmerError(
                f"Wallet {farmer.wallet_address} is already registered"
            )
        self._farmers[farmer.id] = farmer.model_copy(deep=True)
        return farmer.model_copy(deep=True)

    async def get_farmer(self, farmer_id: str) -> Farmer:
        farmer = self._farmers.get(farmer_id)
        if farmer is None:
            raise FarmerNotFoundError(f"Farmer {farmer_id} not found")
        return farmer.model_copy(deep=True)

    async def update_thresholds(self, farmer_id: str, thresholds: ThresholdConfig) -> Farmer:
        farmer = await self.get_farmer(farmer_id)
        updated = farmer.model_copy(update={"weather_thresholds": thresholds}, deep=True)
        self._farmers[farmer_id] = updated
        return updated.model_copy(deep=True)

    async def list_eligible(self) -> List[Farmer]:
        return [
            f.model_copy(deep=True) for f in self._farmers.values()
            if f.is_eligible_for_payout
        ]

    async def find_policy(self, farmer_id: str) -> Optional[Policy]:
        farmer = self._farmers.get(farmer_id)
        if farmer is None:
            return None
        return Policy(
            farmer_id=farmer.id,
            coverage_amount=farmer.insurance.coverage_amount,
            active=farmer.is_eligible_for_payout,
        )


def _mean(values: List[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


class InMemoryObservationRepository(ObservationRepository):
    """
    Process-local observation log.

    Observations are kept per farmer in timestamp order. Re-recording an
    observation id is a no-op, so polling the same provider reading twice
    stores it once.
    """

    def __init__(self, max_per_farmer: int = 5000):
        self._observations: Dict[str, List[Observation]] = {}
        self._seen_ids: Dict[str, set] = {}
        self.max_per_farmer = max_per_farmer

    async def record(self, farmer_id: str, observation: Observation) -> bool:
        seen = self._seen_ids.setdefault(farmer_id, set())
        if observation.id is not None and observation.id in seen:
            return False

        log = self._observations.setdefault(farmer_id, [])
        log.append(observation.model_copy(deep=True))
        log.sort(key=lambda o: o.timestamp)
        if observation.id is not None:
            seen.add(observation.id)

        if len(log) > self.max_per_farmer:
            dropped = log.pop(0)
            seen.discard(dropped.id)
            logger.debug(f"Observation log for farmer {farmer_id} full; dropped {dropped.id}")
        return True

    async def latest(self, farmer_id: str) -> Optional[Observation]:
        log = self._observations.get(farmer_id)
        if not log:
            return None
        return log[-1].model_copy(deep=True)

    async def history(
        self,
        farmer_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[Observation]:
        matches = self._between(farmer_id, start, end)
        matches.reverse()
        return [o.model_copy(deep=True) for o in matches[:limit]]

    async def stats(
        self,
        farmer_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> WeatherStats:
        matches = self._between(farmer_id, start, end)
        if not matches:
            return WeatherStats()

        current = [o.temperature.current for o in matches if o.temperature.current is not None]
        lows = [
            o.temperature.min if o.temperature.min is not None else o.temperature.current
            for o in matches
            if o.temperature.min is not None or o.temperature.current is not None
        ]
        highs = [
            o.temperature.max if o.temperature.max is not None else o.temperature.current
            for o in matches
            if o.temperature.max is not None or o.temperature.current is not None
        ]
        rainfall = [o.rainfall for o in matches if o.rainfall is not None]
        humidity = [o.humidity for o in matches if o.humidity is not None]
        wind = [o.wind_speed for o in matches if o.wind_speed is not None]

        return WeatherStats(
            count=len(matches),
            avg_temperature=_mean(current),
            min_temperature=min(lows, default=0.0),
            max_temperature=max(highs, default=0.0),
            total_rainfall=round(sum(rainfall), 2),
            avg_humidity=_mean(humidity),
            avg_wind_speed=_mean(wind),
            max_wind_speed=max(wind, default=0.0),
        )

    def _between(
        self,
        farmer_id: str,
        start: Optional[datetime],
        end: Optional[datetime],
    ) -> List[Observation]:
        return [
            o for o in self._observations.get(farmer_id, [])
            if (start is None or o.timestamp >= start)
            and (end is None or o.timestamp <= end)
        ]


# Singleton instances
_claim_repository: Optional[InMemoryClaimRepository] = None
_farmer_repository: Optional[InMemoryFarmerRepository] = None
_observation_repository: Optional[InMemoryObservationRepository] = None


def get_claim_repository() -> ClaimRepository:
    """
    Get or create the singleton claim repository.

    Returns:
        ClaimRepository instance
    """
    global _claim_repository
    if _claim_repository is None:
        _claim_repository = InMemoryClaimRepository()
    return _claim_repository


def get_farmer_repository() -> FarmerRepository:
    """
    Get or create the singleton farmer repository.

    Returns:
        FarmerRepository instance
    """
    global _farmer_repository
    if _farmer_repository is None:
        _farmer_repository = InMemoryFarmerRepository()
    return _farmer_repository


def get_observation_repository() -> ObservationRepository:
    """
    Get or create the singleton observation repository.

    Returns:
        ObservationRepository instance
    """
    global _observation_repository
    if _observation_repository is None:
        _observation_repository = InMemoryObservationRepository()
    return _observation_repository
