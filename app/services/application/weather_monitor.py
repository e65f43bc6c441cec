"""
Application service: Periodic weather monitoring.

Each pass fetches the latest observation for every eligible farmer, records
it in the farmer's weather history, hands it to the settlement coordinator,
then resumes claims left pending by earlier passes.
"""
from dataclasses import dataclass, field
from typing import List, Optional
import asyncio
import logging

from app.config import settings
from app.domain.models import ClaimStatus, Farmer
from app.domain.outcomes import OutcomeKind
from app.infrastructure.repositories import FarmerRepository, ObservationRepository
from app.infrastructure.weather_client import FallbackWeatherProvider
from app.services.application.claim_settlement import ClaimSettlementCoordinator

logger = logging.getLogger(__name__)


@dataclass
class MonitorReport:
    """Counters for one monitoring pass."""
    farmers_checked: int = 0
    claims_created: int = 0
    duplicates: int = 0
    no_claims: int = 0
    errors: List[str] = field(default_factory=list)
    reconciled: int = 0
    paid: int = 0


class WeatherMonitor:
    """
    Periodic driver for claim settlement.

    Farmers are processed with bounded parallelism; the coordinator keeps
    each farmer's own settlement strictly sequential.
    """

    def __init__(
        self,
        farmer_repository: FarmerRepository,
        weather_provider: FallbackWeatherProvider,
        coordinator: ClaimSettlementCoordinator,
        interval_seconds: Optional[int] = None,
        concurrency: Optional[int] = None,
        observation_repository: Optional[ObservationRepository] = None,
    ):
        """
        Initialize the monitor.

        Args:
            farmer_repository: Source of eligible farmers
            weather_provider: Observation source
            coordinator: Settlement coordinator
            interval_seconds: Seconds between passes
            concurrency: Maximum farmers settled at once
            observation_repository: Weather history store; observations are not kept when omitted
        """
        self.farmers = farmer_repository
        self.weather_provider = weather_provider
        self.coordinator = coordinator
        self.observations = observation_repository
        self.interval_seconds = interval_seconds or settings.monitor_interval_seconds
        self.concurrency = concurrency or settings.monitor_concurrency
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> MonitorReport:
        """
        Run a single monitoring pass.

        Returns:
            MonitorReport for the pass
        """
        report = MonitorReport()
        farmers = await self.farmers.list_eligible()
        logger.info(f"Processing weather triggers for {len(farmers)} farmer(s)")

        semaphore = asyncio.Semaphore(self.concurrency)

        async def process(farmer: Farmer):
            async with semaphore:
                await self._process_farmer(farmer, report)

        await asyncio.gather(*(process(farmer) for farmer in farmers))

        reconciled = await self.coordinator.reconcile_pending()
        report.reconciled = len(reconciled)
        report.paid += sum(1 for claim in reconciled if claim.status == ClaimStatus.PAID)

        logger.info(
            f"Weather trigger pass complete: checked={report.farmers_checked}, "
            f"created={report.claims_created}, errors={len(report.errors)}, "
            f"reconciled={report.reconciled}"
        )
        return report

    async def _process_farmer(self, farmer: Farmer, report: MonitorReport):
        """
        Fetch weather and settle for one farmer, recording the result.

        Errors are logged and counted; the farmer is picked up again on
        the next pass.
        """
        report.farmers_checked += 1
        try:
            observation = await self.weather_provider.fetch_observation(
                farmer.location.latitude,
                farmer.location.longitude,
            )
            if self.observations is not None:
                await self.observations.record(farmer.id, observation)
            outcome = await self.coordinator.settle(farmer, observation)
        except Exception as e:
            logger.exception(f"Error processing farmer {farmer.id}: {e}")
            report.errors.append(f"{farmer.id}: {e}")
            return

        if outcome.kind == OutcomeKind.NO_CLAIM:
            report.no_claims += 1
        elif outcome.duplicate:
            report.duplicates += 1
        else:
            report.claims_created += 1
            if outcome.claim.status == ClaimStatus.PAID:
                report.paid += 1

    async def run_forever(self):
        """Run passes every ``interval_seconds`` until cancelled."""
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Weather monitoring pass failed")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        """
        Start monitoring in the background.

        Returns:
            The running task
        """
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever())
            logger.info(f"Weather monitoring started (every {self.interval_seconds}s)")
        return self._task

    async def stop(self):
        """Cancel the background task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Weather monitoring stopped")
