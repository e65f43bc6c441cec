"""
Application service: Claim settlement coordination.

Turns a (farmer, observation) pair into at most one claim and drives that
claim to a transfer outcome. The claim is persisted before any transfer is
attempted, and every retry asks the ledger for the claim's transfer state
first, so a crash at any point never loses an owed payout or pays twice.
"""
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Dict, List, Optional
import asyncio
import hashlib
import logging

from app.config import settings
from app.domain.models import (
    Claim,
    ClaimStatus,
    Farmer,
    InvalidClaimTransitionError,
    Observation,
    utcnow,
)
from app.domain.outcomes import (
    ClaimOutcome,
    Receipt,
    RetryableTransferError,
    TerminalTransferError,
    TransferOutcome,
)
from app.infrastructure.ledger_client import LedgerClient
from app.infrastructure.repositories import (
    ClaimRepository,
    DuplicateClaimError,
    FarmerRepository,
)
from app.services.domain.payout_calculator import PayoutCalculator
from app.services.domain.threshold_evaluator import (
    ThresholdEvaluator,
    breached_metrics,
    trigger_reason,
)

logger = logging.getLogger(__name__)


class SettlementInputError(ValueError):
    """Raised when a settlement cannot start because its inputs are unusable."""
    pass


def derive_claim_key(farmer_id: str, observation: Observation) -> str:
    """
    Derive the deterministic claim key for a farmer and triggering observation.

    Args:
        farmer_id: Farmer identifier
        observation: Triggering observation

    Returns:
        Claim key such as ``claim_3f2a...``
    """
    basis = observation.id or observation.timestamp.isoformat()
    digest = hashlib.sha256(f"{farmer_id}|{basis}".encode("utf-8")).hexdigest()
    return f"claim_{digest[:32]}"


class FarmerLocks:
    """
    Per-farmer asyncio locks.

    A lock exists only while some caller holds or waits on it, so the
    table does not grow with every farmer ever settled.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = defaultdict(int)

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, farmer_id: str) -> bool:
        lock = self._locks.get(farmer_id)
        return lock is not None and lock.locked()

    async def acquire(self, farmer_id: str):
        lock = self._locks.setdefault(farmer_id, asyncio.Lock())
        self._users[farmer_id] += 1
        try:
            await lock.acquire()
        except BaseException:
            self._forget(farmer_id)
            raise

    def release(self, farmer_id: str):
        self._locks[farmer_id].release()
        self._forget(farmer_id)

    @asynccontextmanager
    async def hold(self, farmer_id: str):
        await self.acquire(farmer_id)
        try:
            yield
        finally:
            self.release(farmer_id)

    def _forget(self, farmer_id: str):
        self._users[farmer_id] -= 1
        if self._users[farmer_id] == 0:
            del self._users[farmer_id]
            del self._locks[farmer_id]


class ClaimSettlementCoordinator:
    """
    Application service for claim creation and payout settlement.

    Orchestrates the threshold evaluator, the payout calculator, the claim
    repository and the ledger client. Work for one farmer is serialized by
    a per-farmer lock; different farmers settle independently.

    Once a transfer starts, the farmer lock belongs to the shielded transfer
    task and is released only when its outcome is recorded, even if the
    caller that started it is cancelled.
    """

    def __init__(
        self,
        claim_repository: ClaimRepository,
        farmer_repository: FarmerRepository,
        ledger: LedgerClient,
        evaluator: Optional[ThresholdEvaluator] = None,
        calculator: Optional[PayoutCalculator] = None,
        max_transfer_attempts: Optional[int] = None,
        currency: Optional[str] = None,
        processing_fee: Optional[float] = None,
    ):
        """
        Initialize the coordinator with dependencies.

        Args:
            claim_repository: Claim persistence
            farmer_repository: Farmer and policy persistence
            ledger: Payout executor
            evaluator: Threshold evaluator
            calculator: Payout calculator
            max_transfer_attempts: Attempts before a retryable failure becomes terminal
            currency: Payout currency
            processing_fee: Flat fee deducted from each payout
        """
        self.claims = claim_repository
        self.farmers = farmer_repository
        self.ledger = ledger
        self.evaluator = evaluator or ThresholdEvaluator()
        self.calculator = calculator or PayoutCalculator()
        self.max_transfer_attempts = max_transfer_attempts or settings.max_transfer_attempts
        self.currency = currency or settings.payout_currency
        self.processing_fee = (
            processing_fee if processing_fee is not None else settings.processing_fee
        )
        self.locks = FarmerLocks()

    async def settle(self, farmer: Farmer, observation: Observation) -> ClaimOutcome:
        """
        Evaluate an observation for a farmer and settle any resulting claim.

        This method orchestrates:
        1. Returning the existing claim if this trigger was already handled
        2. Evaluating thresholds
        3. Calculating the payout
        4. Persisting a pending claim
        5. Transferring funds and recording the outcome

        Args:
            farmer: Farmer whose thresholds and wallet are used
            observation: Latest weather observation for the farm

        Returns:
            ClaimOutcome (no claim, or the created/existing claim)

        Raises:
            SettlementInputError: If the farmer has no policy
        """
        await self.locks.acquire(farmer.id)
        handed_over = False
        try:
            claim_key = derive_claim_key(farmer.id, observation)

            existing = await self.claims.find_claim(claim_key)
            if existing is not None and existing.status != ClaimStatus.FAILED:
                logger.info(
                    f"Claim {existing.id} already exists for farmer {farmer.id} "
                    f"and observation {observation.id} ({existing.status.value})"
                )
                return ClaimOutcome.created(existing, duplicate=True)

            breaches = self.evaluator.evaluate(observation, farmer.weather_thresholds)
            if not breached_metrics(breaches):
                logger.debug(f"No thresholds breached for farmer {farmer.id}")
                return ClaimOutcome.no_claim("No threshold breached")

            policy = await self.farmers.find_policy(farmer.id)
            if policy is None:
                raise SettlementInputError(f"No policy found for farmer {farmer.id}")

            decision = self.calculator.calculate(breaches, policy)
            if not decision.payable:
                logger.info(f"Breach for farmer {farmer.id} not payable: {decision.reason}")
                return ClaimOutcome.no_claim(decision.reason)

            claim = Claim(
                claim_key=claim_key,
                farmer_id=farmer.id,
                wallet_address=farmer.wallet_address,
                observation=observation,
                breaches=breaches,
                payout_amount=decision.amount,
                multiplier=decision.multiplier,
                currency=self.currency,
                processing_fee=min(self.processing_fee, decision.amount),
                trigger_reason=trigger_reason(breaches),
            )

            try:
                claim = await self.claims.create_claim(claim)
            except DuplicateClaimError:
                winner = await self.claims.find_claim(claim_key)
                logger.info(f"Concurrent claim detected for {claim_key}; returning {winner.id}")
                return ClaimOutcome.created(winner, duplicate=True)

            logger.info(
                f"Claim {claim.id} created for farmer {farmer.id}: "
                f"{claim.trigger_reason}, payout {claim.net_payout:.2f} {claim.currency}"
            )

            handed_over = True
            claim = await asyncio.shield(self._transfer_and_release(farmer.id, claim))
            return ClaimOutcome.created(claim)
        finally:
            if not handed_over:
                self.locks.release(farmer.id)

    async def reconcile_pending(self) -> List[Claim]:
        """
        Resume every pending claim.

        The ledger is queried for each claim's transfer before anything is
        resubmitted. A failure on one claim is logged and leaves it pending
        for the next pass.

        Returns:
            Claims as they stand after this pass
        """
        pending = await self.claims.find_by_status(ClaimStatus.PENDING)
        if pending:
            logger.info(f"Reconciling {len(pending)} pending claim(s)")

        results = []
        for claim in pending:
            try:
                results.append(await self.reconcile_claim(claim.id))
            except Exception:
                logger.exception(f"Failed to reconcile claim {claim.id}; will retry next pass")
        return results

    async def reconcile_claim(self, claim_id: str) -> Claim:
        """
        Resume a single pending claim.

        Args:
            claim_id: Claim identifier

        Returns:
            Claim after reconciliation (unchanged if no longer pending)
        """
        farmer_id = (await self.claims.get_claim(claim_id)).farmer_id
        await self.locks.acquire(farmer_id)
        handed_over = False
        try:
            claim = await self.claims.get_claim(claim_id)
            if claim.status != ClaimStatus.PENDING:
                return claim
            handed_over = True
            return await asyncio.shield(
                self._transfer_and_release(farmer_id, claim, query_first=True)
            )
        finally:
            if not handed_over:
                self.locks.release(farmer_id)

    async def reject_claim(
        self,
        claim_id: str,
        reviewed_by: str,
        notes: str = "",
    ) -> Claim:
        """
        Administratively reject a pending claim.

        Args:
            claim_id: Claim identifier
            reviewed_by: Reviewer identity
            notes: Review notes

        Returns:
            The rejected claim

        Raises:
            InvalidClaimTransitionError: If the claim is not pending, its
                transfer already completed, or its transfer state is unknown
        """
        farmer_id = (await self.claims.get_claim(claim_id)).farmer_id
        async with self.locks.hold(farmer_id):
            claim = await self.claims.get_claim(claim_id)
            if claim.status != ClaimStatus.PENDING:
                raise InvalidClaimTransitionError(
                    f"Claim {claim.id} is {claim.status.value} and cannot be rejected"
                )

            recorded = await self.ledger.lookup_transfer(claim.claim_key)
            if isinstance(recorded, Receipt):
                await self._mark_paid(claim, recorded)
                raise InvalidClaimTransitionError(
                    f"Claim {claim.id} was already paid in {recorded.transaction_hash}"
                )
            if isinstance(recorded, RetryableTransferError):
                raise InvalidClaimTransitionError(
                    f"Transfer state for claim {claim.id} is unknown ({recorded.reason}); "
                    f"try again later"
                )

            rejected = await self.claims.update_claim_status(
                claim.id,
                ClaimStatus.REJECTED,
                {
                    "reviewed_by": reviewed_by,
                    "review_notes": notes,
                    "reviewed_at": utcnow(),
                },
            )
            logger.info(f"Claim {claim.id} rejected by {reviewed_by}")
            return rejected

    async def _transfer_and_release(
        self,
        farmer_id: str,
        claim: Claim,
        query_first: bool = False,
    ) -> Claim:
        """Run one transfer attempt, then release the farmer lock handed over by the caller."""
        try:
            return await self._transfer(claim, query_first=query_first)
        finally:
            self.locks.release(farmer_id)

    async def _transfer(self, claim: Claim, query_first: bool = False) -> Claim:
        """
        Drive a pending claim through one transfer attempt.

        Args:
            claim: Pending claim
            query_first: Ask the ledger for an existing transfer before submitting

        Returns:
            Claim with its updated status
        """
        if query_first:
            recorded = await self.ledger.lookup_transfer(claim.claim_key)
            if recorded is not None:
                logger.info(f"Ledger reports {recorded.kind} for claim {claim.id}")
                return await self._record_outcome(claim, recorded)

        outcome = await self.ledger.transfer(
            payee=claim.wallet_address,
            amount=claim.net_payout,
            claim_key=claim.claim_key,
            currency=claim.currency,
        )
        return await self._record_outcome(claim, outcome)

    async def _record_outcome(self, claim: Claim, outcome: TransferOutcome) -> Claim:
        """
        Persist the claim status implied by a transfer outcome.

        A claim that has already left ``pending`` is returned unchanged. An
        in-flight transfer leaves the claim pending without using up an
        attempt.

        Args:
            claim: Pending claim
            outcome: Receipt or transfer error

        Returns:
            Updated claim
        """
        current = await self.claims.get_claim(claim.id)
        if current.status != ClaimStatus.PENDING:
            logger.info(
                f"Claim {current.id} is already {current.status.value}; "
                f"ignoring {outcome.kind} outcome"
            )
            return current

        if isinstance(outcome, Receipt):
            return await self._mark_paid(current, outcome)

        if isinstance(outcome, RetryableTransferError):
            if outcome.in_flight:
                logger.info(f"Transfer for claim {current.id} in flight: {outcome.reason}")
                return current

            attempts = current.transfer_attempts + 1
            if attempts >= self.max_transfer_attempts:
                return await self._exhaust_retry_budget(current, outcome, attempts)

            logger.warning(
                f"Transfer for claim {current.id} failed (attempt {attempts}/"
                f"{self.max_transfer_attempts}), will retry: {outcome.reason}"
            )
            return await self.claims.update_claim_status(
                current.id,
                ClaimStatus.PENDING,
                {"transfer_attempts": attempts, "last_error": outcome.reason},
            )

        if isinstance(outcome, TerminalTransferError):
            logger.error(f"Claim {current.id} failed permanently: {outcome.reason}")
            return await self.claims.update_claim_status(
                current.id,
                ClaimStatus.FAILED,
                {
                    "transfer_attempts": current.transfer_attempts + 1,
                    "last_error": outcome.reason,
                    "failure_reason": outcome.reason,
                },
            )

        raise TypeError(f"Unknown transfer outcome: {outcome!r}")

    async def _exhaust_retry_budget(
        self,
        claim: Claim,
        outcome: RetryableTransferError,
        attempts: int,
    ) -> Claim:
        """
        Fail a claim whose retry budget ran out, unless the ledger shows funds moved.

        Only a lookup confirming there is no transfer (or a terminal one)
        fails the claim. A receipt pays it, and an in-flight or unreadable
        transfer keeps it pending for the next pass.

        Args:
            claim: Pending claim
            outcome: The retryable error that used up the last attempt
            attempts: Attempt count including this one

        Returns:
            Updated claim
        """
        recorded = await self.ledger.lookup_transfer(claim.claim_key)

        if isinstance(recorded, Receipt):
            return await self._mark_paid(claim, recorded)

        if isinstance(recorded, RetryableTransferError):
            logger.warning(
                f"Retry budget for claim {claim.id} used up but its transfer state is "
                f"unresolved ({recorded.reason}); leaving it pending"
            )
            return await self.claims.update_claim_status(
                claim.id,
                ClaimStatus.PENDING,
                {"transfer_attempts": attempts, "last_error": outcome.reason},
            )

        reason = f"Retry budget exhausted after {attempts} attempts: {outcome.reason}"
        logger.error(f"Claim {claim.id} failed: {reason}")
        return await self.claims.update_claim_status(
            claim.id,
            ClaimStatus.FAILED,
            {
                "transfer_attempts": attempts,
                "last_error": outcome.reason,
                "failure_reason": reason,
            },
        )

    async def _mark_paid(self, claim: Claim, receipt: Receipt) -> Claim:
        updated = await self.claims.update_claim_status(
            claim.id,
            ClaimStatus.PAID,
            {
                "transaction_hash": receipt.transaction_hash,
                "block_number": receipt.block_number,
                "gas_used": receipt.gas_used,
                "paid_at": utcnow(),
                "last_error": None,
            },
        )
        logger.info(f"Claim {claim.id} paid in transaction {receipt.transaction_hash}")
        return updated
