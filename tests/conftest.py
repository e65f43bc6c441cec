"""
Shared pytest fixtures for all tests.

This module provides common fixtures including:
- Sample thresholds, farmers and observations
- In-memory claim, farmer and observation repositories
- Mock ledger client
- Settlement coordinator
- FastAPI test client
"""
import os

# Retry backoff is read at import time; keep retries instant under test
os.environ.setdefault("RETRY_MIN_WAIT", "0")
os.environ.setdefault("RETRY_MAX_WAIT", "0")

import pytest
import pytest_asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

from app.main import app
from app.domain.models import (
    Farmer,
    InsuranceDetails,
    Location,
    MetricBounds,
    Observation,
    PolicyStatus,
    TemperatureReading,
    ThresholdConfig,
    UpperBound,
)
from app.domain.outcomes import Receipt
from app.infrastructure.ledger_client import LedgerClient
from app.infrastructure.repositories import (
    InMemoryClaimRepository,
    InMemoryFarmerRepository,
    InMemoryObservationRepository,
)
from app.services.application.claim_settlement import ClaimSettlementCoordinator


WALLET = "0x" + "ab" * 20


# ============================================================
# Sample Data Fixtures
# ============================================================

@pytest.fixture
def all_thresholds() -> ThresholdConfig:
    """Thresholds on all four metrics."""
    return ThresholdConfig(
        temperature=MetricBounds(max=35),
        rainfall=MetricBounds(min=50),
        humidity=MetricBounds(max=90),
        wind_speed=UpperBound(max=50),
    )


@pytest.fixture
def make_observation():
    """Factory for observations; defaults breach nothing in all_thresholds."""
    def _make(
        obs_id: str = "weatherapi:-1.2921,36.8219:1700000000",
        temperature: float = 30.0,
        rainfall: float = 60.0,
        humidity: float = 70.0,
        wind_speed: float = 20.0,
        **overrides,
    ) -> Observation:
        values = dict(
            id=obs_id,
            timestamp=datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc),
            latitude=-1.2921,
            longitude=36.8219,
            temperature=TemperatureReading(current=temperature),
            humidity=humidity,
            rainfall=rainfall,
            wind_speed=wind_speed,
            source="weatherapi",
            confidence=0.95,
        )
        values.update(overrides)
        return Observation(**values)
    return _make


@pytest.fixture
def make_farmer():
    """Factory for insured farmers."""
    def _make(
        thresholds: ThresholdConfig = None,
        coverage_amount: float = 1000.0,
        policy_status: PolicyStatus = PolicyStatus.ACTIVE,
        wallet_address: str = WALLET,
        **overrides,
    ) -> Farmer:
        values = dict(
            name="Amina Njoroge",
            wallet_address=wallet_address,
            location=Location(latitude=-1.2921, longitude=36.8219),
            weather_thresholds=thresholds or ThresholdConfig(),
            insurance=InsuranceDetails(
                is_registered=True,
                coverage_amount=coverage_amount,
                policy_status=policy_status,
            ),
        )
        values.update(overrides)
        return Farmer(**values)
    return _make


# ============================================================
# Repository and Coordinator Fixtures
# ============================================================

@pytest.fixture
def claim_repository() -> InMemoryClaimRepository:
    return InMemoryClaimRepository()


@pytest.fixture
def farmer_repository() -> InMemoryFarmerRepository:
    return InMemoryFarmerRepository()


@pytest.fixture
def observation_repository() -> InMemoryObservationRepository:
    return InMemoryObservationRepository()


@pytest.fixture
def receipt() -> Receipt:
    return Receipt(transaction_hash="0x" + "12" * 32, block_number=1_204_331, gas_used=21000)


@pytest.fixture
def mock_ledger(receipt):
    """Mock ledger client that confirms every transfer."""
    ledger = AsyncMock(spec=LedgerClient)
    ledger.transfer.return_value = receipt
    ledger.lookup_transfer.return_value = None
    return ledger


@pytest.fixture
def coordinator(claim_repository, farmer_repository, mock_ledger) -> ClaimSettlementCoordinator:
    return ClaimSettlementCoordinator(
        claim_repository=claim_repository,
        farmer_repository=farmer_repository,
        ledger=mock_ledger,
        max_transfer_attempts=3,
        currency="cUSD",
        processing_fee=0.0,
    )


@pytest_asyncio.fixture
async def registered_farmer(farmer_repository, make_farmer, all_thresholds) -> Farmer:
    """An insured farmer with all four thresholds, stored in the repository."""
    return await farmer_repository.add_farmer(make_farmer(thresholds=all_thresholds))


# ============================================================
# FastAPI Test Client Fixtures
# ============================================================

@pytest.fixture
def test_client() -> TestClient:
    """Create a synchronous test client for FastAPI."""
    return TestClient(app)
