"""
Domain service: Parametric payout calculation.
"""
from dataclasses import dataclass
from typing import Dict, Optional
import logging

from app.config import settings
from app.domain.models import BreachResult, Metric, Policy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayoutDecision:
    """Amount owed for a set of breaches, or why nothing is owed."""
    amount: float
    multiplier: float
    payable: bool
    reason: Optional[str] = None


class PayoutCalculator:
    """
    Converts breach results into a payout bounded by the policy coverage.

    Each breached metric adds a fixed share of the coverage; shares are
    summed, never compounded, and the total is capped at full coverage.
    """

    def __init__(self, share_per_metric: Optional[float] = None):
        """
        Initialize the calculator.

        Args:
            share_per_metric: Fraction of coverage per breached metric
        """
        self.share_per_metric = (
            share_per_metric if share_per_metric is not None
            else settings.payout_share_per_metric
        )

    def calculate(
        self,
        breach_results: Dict[Metric, BreachResult],
        policy: Policy,
    ) -> PayoutDecision:
        """
        Calculate the payout for a set of breach results.

        Args:
            breach_results: Evaluator output
            policy: Farmer's policy (coverage and active flag)

        Returns:
            PayoutDecision; ``payable`` is False when no claim should be made
        """
        if not policy.active:
            return PayoutDecision(0.0, 0.0, False, "Policy is not active")
        if policy.coverage_amount <= 0:
            return PayoutDecision(0.0, 0.0, False, "Policy has no coverage")

        breaches = sum(1 for result in breach_results.values() if result.exceeded)
        if breaches == 0:
            return PayoutDecision(0.0, 0.0, False, "No threshold breached")

        multiplier = min(breaches * self.share_per_metric, 1.0)
        coverage = policy.coverage_amount
        amount = min(round(coverage * multiplier, 2), coverage)

        if amount <= 0:
            return PayoutDecision(0.0, multiplier, False, "Payout rounds to zero")

        logger.debug(
            f"Payout for farmer {policy.farmer_id}: {breaches} breach(es), "
            f"multiplier={multiplier:.2f}, amount={amount:.2f}"
        )
        return PayoutDecision(amount=amount, multiplier=multiplier, payable=True)
