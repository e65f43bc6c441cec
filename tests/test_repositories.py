"""
Unit tests for the in-memory repositories.

Tests cover:
- Claim key uniqueness
- Lifecycle enforcement on status updates
- Listing, counting, summaries and monthly timelines
- Farmer registration and policy lookup
- Weather history and statistics
"""
import pytest
from datetime import datetime, timezone

from app.domain.models import (
    Claim,
    ClaimStatus,
    InvalidClaimTransitionError,
    PolicyStatus,
    TemperatureReading,
    ThresholdConfig,
    MetricBounds,
)
from app.infrastructure.repositories import (
    ClaimNotFoundError,
    DuplicateClaimError,
    DuplicateFarmerError,
    FarmerNotFoundError,
    InMemoryObservationRepository,
)


@pytest.fixture
def make_claim(make_observation):
    """Factory for pending claims."""
    def _make(claim_key: str = "claim_a", farmer_id: str = "farmer-1", payout_amount: float = 250.0, **overrides):
        values = dict(
            claim_key=claim_key,
            farmer_id=farmer_id,
            wallet_address="0x" + "ab" * 20,
            observation=make_observation(),
            breaches={},
            payout_amount=payout_amount,
            multiplier=0.25,
            trigger_reason="Rainfall threshold exceeded",
        )
        values.update(overrides)
        return Claim(**values)
    return _make


# ============================================================
# Claim Storage Tests
# ============================================================

class TestClaimStorage:
    """Tests for creating and reading claims."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, claim_repository, make_claim):
        claim = await claim_repository.create_claim(make_claim())

        stored = await claim_repository.get_claim(claim.id)

        assert stored == claim
        assert await claim_repository.find_claim("claim_a") == claim

    @pytest.mark.asyncio
    async def test_returned_claims_are_copies(self, claim_repository, make_claim):
        claim = await claim_repository.create_claim(make_claim())
        claim.status_history.append(ClaimStatus.PAID)

        stored = await claim_repository.get_claim(claim.id)

        assert stored.status_history == [ClaimStatus.PENDING]

    @pytest.mark.asyncio
    async def test_duplicate_active_key_rejected(self, claim_repository, make_claim):
        await claim_repository.create_claim(make_claim())

        with pytest.raises(DuplicateClaimError):
            await claim_repository.create_claim(make_claim())

    @pytest.mark.asyncio
    async def test_failed_claim_frees_key(self, claim_repository, make_claim):
        first = await claim_repository.create_claim(make_claim())
        await claim_repository.update_claim_status(
            first.id, ClaimStatus.FAILED, {"failure_reason": "Payee not registered"}
        )

        second = await claim_repository.create_claim(make_claim())

        assert second.id != first.id
        assert (await claim_repository.find_claim("claim_a")).id == second.id

    @pytest.mark.asyncio
    async def test_find_unknown_key(self, claim_repository):
        assert await claim_repository.find_claim("claim_missing") is None

    @pytest.mark.asyncio
    async def test_get_unknown_id(self, claim_repository):
        with pytest.raises(ClaimNotFoundError):
            await claim_repository.get_claim("missing")


# ============================================================
# Lifecycle Tests
# ============================================================

class TestClaimLifecycle:
    """Tests for status updates."""

    @pytest.mark.asyncio
    async def test_update_records_history_and_details(self, claim_repository, make_claim):
        claim = await claim_repository.create_claim(make_claim())

        paid = await claim_repository.update_claim_status(
            claim.id, ClaimStatus.PAID, {"transaction_hash": "0xabc"}
        )

        assert paid.status == ClaimStatus.PAID
        assert paid.transaction_hash == "0xabc"
        assert paid.status_history == [ClaimStatus.PENDING, ClaimStatus.PAID]
        assert paid.is_terminal

    @pytest.mark.asyncio
    async def test_pending_to_pending_keeps_history(self, claim_repository, make_claim):
        claim = await claim_repository.create_claim(make_claim())

        updated = await claim_repository.update_claim_status(
            claim.id, ClaimStatus.PENDING, {"transfer_attempts": 1}
        )

        assert updated.transfer_attempts == 1
        assert updated.status_history == [ClaimStatus.PENDING]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("terminal", [ClaimStatus.PAID, ClaimStatus.FAILED, ClaimStatus.REJECTED])
    async def test_terminal_status_is_final(self, claim_repository, make_claim, terminal):
        claim = await claim_repository.create_claim(make_claim())
        await claim_repository.update_claim_status(claim.id, terminal)

        with pytest.raises(InvalidClaimTransitionError):
            await claim_repository.update_claim_status(claim.id, ClaimStatus.PENDING)

    def test_net_payout_deducts_fee(self, make_claim):
        assert make_claim(processing_fee=12.5).net_payout == 237.5
        assert make_claim(payout_amount=5.0, processing_fee=10.0).net_payout == 0.0


# ============================================================
# Query Tests
# ============================================================

class TestClaimQueries:
    """Tests for listing, counting and summaries."""

    @pytest.mark.asyncio
    async def test_list_filters_and_paginates(self, claim_repository, make_claim):
        for i in range(5):
            await claim_repository.create_claim(make_claim(claim_key=f"claim_{i}"))
        await claim_repository.create_claim(make_claim(claim_key="claim_other", farmer_id="farmer-2"))

        page_one = await claim_repository.list_claims(farmer_id="farmer-1", limit=3, offset=0)
        page_two = await claim_repository.list_claims(farmer_id="farmer-1", limit=3, offset=3)

        assert len(page_one) == 3
        assert len(page_two) == 2
        assert {c.id for c in page_one}.isdisjoint({c.id for c in page_two})
        assert await claim_repository.count(farmer_id="farmer-1") == 5
        assert await claim_repository.count() == 6

    @pytest.mark.asyncio
    async def test_find_by_status(self, claim_repository, make_claim):
        first = await claim_repository.create_claim(make_claim(claim_key="claim_1"))
        await claim_repository.create_claim(make_claim(claim_key="claim_2"))
        await claim_repository.update_claim_status(first.id, ClaimStatus.PAID)

        pending = await claim_repository.find_by_status(ClaimStatus.PENDING)

        assert [c.claim_key for c in pending] == ["claim_2"]
        assert await claim_repository.count(status=ClaimStatus.PAID) == 1

    @pytest.mark.asyncio
    async def test_summarize(self, claim_repository, make_claim):
        first = await claim_repository.create_claim(make_claim(claim_key="claim_1", payout_amount=250.0))
        second = await claim_repository.create_claim(make_claim(claim_key="claim_2", payout_amount=500.0))
        await claim_repository.create_claim(make_claim(claim_key="claim_3", payout_amount=750.0))
        await claim_repository.update_claim_status(first.id, ClaimStatus.PAID)
        await claim_repository.update_claim_status(second.id, ClaimStatus.PAID)

        summary = await claim_repository.summarize()

        assert summary.total_paid_amount == 750.0
        assert summary.paid_claims == 2
        assert summary.average_payout == 375.0
        assert summary.by_status[ClaimStatus.PENDING].count == 1
        assert summary.by_status[ClaimStatus.PENDING].total_amount == 750.0

    @pytest.mark.asyncio
    async def test_summarize_empty(self, claim_repository):
        summary = await claim_repository.summarize(farmer_id="nobody")

        assert summary.paid_claims == 0
        assert summary.average_payout == 0.0
        assert summary.by_status == {}

    @pytest.mark.asyncio
    async def test_timeline_groups_by_month_and_status(self, claim_repository, make_claim):
        march = datetime(2024, 3, 5, tzinfo=timezone.utc)
        april = datetime(2024, 4, 20, tzinfo=timezone.utc)
        first = await claim_repository.create_claim(make_claim(claim_key="claim_1", created_at=march))
        await claim_repository.create_claim(make_claim(claim_key="claim_2", created_at=march, payout_amount=500.0))
        await claim_repository.create_claim(make_claim(claim_key="claim_3", created_at=april))
        await claim_repository.update_claim_status(first.id, ClaimStatus.PAID)

        timeline = await claim_repository.timeline()

        assert [(b.year, b.month, b.status, b.count, b.total_amount) for b in timeline] == [
            (2024, 3, ClaimStatus.PAID, 1, 250.0),
            (2024, 3, ClaimStatus.PENDING, 1, 500.0),
            (2024, 4, ClaimStatus.PENDING, 1, 250.0),
        ]

    @pytest.mark.asyncio
    async def test_timeline_filters(self, claim_repository, make_claim):
        await claim_repository.create_claim(
            make_claim(claim_key="claim_1", created_at=datetime(2024, 1, 10, tzinfo=timezone.utc))
        )
        await claim_repository.create_claim(
            make_claim(claim_key="claim_2", created_at=datetime(2024, 5, 10, tzinfo=timezone.utc))
        )
        await claim_repository.create_claim(
            make_claim(
                claim_key="claim_3",
                farmer_id="farmer-2",
                created_at=datetime(2024, 5, 11, tzinfo=timezone.utc),
            )
        )

        timeline = await claim_repository.timeline(
            farmer_id="farmer-1", since=datetime(2024, 3, 1, tzinfo=timezone.utc)
        )

        assert [(b.month, b.count) for b in timeline] == [(5, 1)]


# ============================================================
# Observation Repository Tests
# ============================================================

class TestObservationRepository:
    """Tests for the per-farmer weather history."""

    def _at(self, make_observation, hour: int, **values):
        return make_observation(
            obs_id=f"weatherapi:obs:{hour}",
            timestamp=datetime(2024, 3, 1, hour, tzinfo=timezone.utc),
            **values,
        )

    @pytest.mark.asyncio
    async def test_record_dedupes_by_id(self, observation_repository, make_observation):
        observation = make_observation()

        assert await observation_repository.record("farmer-1", observation) is True
        assert await observation_repository.record("farmer-1", observation) is False
        assert len(await observation_repository.history("farmer-1")) == 1

    @pytest.mark.asyncio
    async def test_latest_and_history_order(self, observation_repository, make_observation):
        for hour in (9, 3, 6):
            await observation_repository.record("farmer-1", self._at(make_observation, hour))

        latest = await observation_repository.latest("farmer-1")
        history = await observation_repository.history("farmer-1", limit=2)

        assert latest.id == "weatherapi:obs:9"
        assert [o.id for o in history] == ["weatherapi:obs:9", "weatherapi:obs:6"]
        assert await observation_repository.latest("farmer-2") is None

    @pytest.mark.asyncio
    async def test_history_period(self, observation_repository, make_observation):
        for hour in (1, 5, 10):
            await observation_repository.record("farmer-1", self._at(make_observation, hour))

        history = await observation_repository.history(
            "farmer-1",
            start=datetime(2024, 3, 1, 5, tzinfo=timezone.utc),
            end=datetime(2024, 3, 1, 10, tzinfo=timezone.utc),
        )

        assert [o.id for o in history] == ["weatherapi:obs:10", "weatherapi:obs:5"]

    @pytest.mark.asyncio
    async def test_stats(self, observation_repository, make_observation):
        await observation_repository.record(
            "farmer-1",
            self._at(
                make_observation, 1,
                temperature=20.0, rainfall=10.0, humidity=60.0, wind_speed=10.0,
            ),
        )
        second = self._at(make_observation, 2, rainfall=5.5, humidity=80.0, wind_speed=30.0)
        await observation_repository.record(
            "farmer-1",
            second.model_copy(
                update={"temperature": TemperatureReading(current=30.0, min=18.0, max=33.0)}
            ),
        )

        stats = await observation_repository.stats("farmer-1")

        assert stats.count == 2
        assert stats.avg_temperature == 25.0
        assert stats.min_temperature == 18.0
        assert stats.max_temperature == 33.0
        assert stats.total_rainfall == 15.5
        assert stats.avg_humidity == 70.0
        assert stats.avg_wind_speed == 20.0
        assert stats.max_wind_speed == 30.0

    @pytest.mark.asyncio
    async def test_stats_without_data_are_zero(self, observation_repository):
        stats = await observation_repository.stats("farmer-1")

        assert stats.count == 0
        assert stats.avg_temperature == 0.0
        assert stats.max_wind_speed == 0.0

    @pytest.mark.asyncio
    async def test_oldest_dropped_when_full(self, make_observation):
        repository = InMemoryObservationRepository(max_per_farmer=2)
        for hour in (1, 2, 3):
            await repository.record("farmer-1", self._at(make_observation, hour))

        history = await repository.history("farmer-1")

        assert [o.id for o in history] == ["weatherapi:obs:3", "weatherapi:obs:2"]
        assert await repository.record("farmer-1", self._at(make_observation, 1)) is True


# ============================================================
# Farmer Repository Tests
# ============================================================

class TestFarmerRepository:
    """Tests for farmer storage and policy lookup."""

    @pytest.mark.asyncio
    async def test_add_and_get(self, farmer_repository, make_farmer):
        farmer = await farmer_repository.add_farmer(make_farmer())

        assert (await farmer_repository.get_farmer(farmer.id)).name == farmer.name

    @pytest.mark.asyncio
    async def test_duplicate_wallet_rejected(self, farmer_repository, make_farmer):
        await farmer_repository.add_farmer(make_farmer())

        with pytest.raises(DuplicateFarmerError):
            await farmer_repository.add_farmer(make_farmer(wallet_address="0x" + "AB" * 20))

    @pytest.mark.asyncio
    async def test_unknown_farmer(self, farmer_repository):
        with pytest.raises(FarmerNotFoundError):
            await farmer_repository.get_farmer("missing")
        assert await farmer_repository.find_policy("missing") is None

    @pytest.mark.asyncio
    async def test_update_thresholds(self, farmer_repository, make_farmer):
        farmer = await farmer_repository.add_farmer(make_farmer())
        thresholds = ThresholdConfig(rainfall=MetricBounds(min=40))

        updated = await farmer_repository.update_thresholds(farmer.id, thresholds)

        assert updated.weather_thresholds == thresholds
        assert (await farmer_repository.get_farmer(farmer.id)).weather_thresholds == thresholds

    @pytest.mark.asyncio
    async def test_policy_and_eligibility(self, farmer_repository, make_farmer):
        active = await farmer_repository.add_farmer(make_farmer())
        expired = await farmer_repository.add_farmer(
            make_farmer(wallet_address="0x" + "cd" * 20, policy_status=PolicyStatus.EXPIRED)
        )

        eligible = await farmer_repository.list_eligible()
        policy = await farmer_repository.find_policy(active.id)
        expired_policy = await farmer_repository.find_policy(expired.id)

        assert [f.id for f in eligible] == [active.id]
        assert policy.coverage_amount == 1000.0
        assert policy.active is True
        assert expired_policy.active is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
