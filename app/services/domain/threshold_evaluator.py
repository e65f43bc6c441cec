"""
Domain service: Weather threshold evaluation.

Compares a weather observation with a farmer's configured thresholds and
grades each breach by how far the reading lies beyond the violated bound:
- deviation = |value - bound| / |bound|
- deviation > critical cut-off -> critical
- deviation > severe cut-off -> severe
- otherwise -> moderate

The evaluator is pure: identical inputs always give identical results,
which the claim key derivation downstream relies on.
"""
from dataclasses import dataclass
from typing import Dict, Optional
import logging

from app.config import settings
from app.domain.models import (
    BreachResult,
    METRIC_LABELS,
    Metric,
    MetricBounds,
    Observation,
    Severity,
    ThresholdConfig,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeverityConfig:
    """Deviation cut-offs used to grade a breach."""

    critical_deviation: float = 0.5
    """Deviation above which a breach is critical"""

    severe_deviation: float = 0.2
    """Deviation above which a breach is severe"""


class ThresholdEvaluator:
    """
    Domain service evaluating observations against threshold configs.

    Metrics are always evaluated in the same order (temperature, rainfall,
    humidity, wind speed). A metric is left out of the result entirely
    when it is not configured, has no bounds, or was not observed.
    """

    def __init__(self, config: Optional[SeverityConfig] = None):
        """
        Initialize the evaluator.

        Args:
            config: Severity cut-offs; defaults to the application settings
        """
        self.config = config or SeverityConfig(
            critical_deviation=settings.severity_critical_deviation,
            severe_deviation=settings.severity_severe_deviation,
        )

    def evaluate(
        self,
        observation: Observation,
        config: ThresholdConfig,
    ) -> Dict[Metric, BreachResult]:
        """
        Evaluate every configured metric of an observation.

        Args:
            observation: Weather reading to check
            config: Farmer's threshold configuration

        Returns:
            Mapping of metric to breach result for evaluated metrics only
        """
        results: Dict[Metric, BreachResult] = {}

        for metric in Metric:
            bounds = config.bounds_for(metric)
            if bounds is None or bounds.is_empty:
                continue

            value = observation.value_for(metric)
            if value is None:
                logger.debug(f"Observation {observation.id} has no {metric.value}; skipping")
                continue

            results[metric] = self._evaluate_metric(value, bounds)

        return results

    def _evaluate_metric(self, value: float, bounds: MetricBounds) -> BreachResult:
        """
        Evaluate a single value against its bounds.

        Args:
            value: Observed value
            bounds: Configured min/max

        Returns:
            BreachResult for the metric
        """
        violated = []
        if bounds.min is not None and value < bounds.min:
            violated.append(bounds.min)
        if bounds.max is not None and value > bounds.max:
            violated.append(bounds.max)

        if not violated:
            return BreachResult(
                exceeded=False,
                value=value,
                severity=Severity.NORMAL,
                threshold=bounds,
            )

        bound = min(violated, key=lambda b: abs(value - b))
        if bound == 0:
            # Any breach of a zero bound has no meaningful ratio
            return BreachResult(
                exceeded=True,
                value=value,
                severity=Severity.CRITICAL,
                threshold=bounds,
            )

        deviation = abs(value - bound) / abs(bound)
        return BreachResult(
            exceeded=True,
            value=value,
            severity=self._grade(deviation),
            threshold=bounds,
            deviation=deviation,
        )

    def _grade(self, deviation: float) -> Severity:
        if deviation > self.config.critical_deviation:
            return Severity.CRITICAL
        if deviation > self.config.severe_deviation:
            return Severity.SEVERE
        return Severity.MODERATE


def breached_metrics(results: Dict[Metric, BreachResult]) -> list[Metric]:
    """Metrics that exceeded their bounds, in evaluation order."""
    return [metric for metric in Metric if metric in results and results[metric].exceeded]


def trigger_reason(results: Dict[Metric, BreachResult]) -> str:
    """
    Build the human-readable reason stored on a claim.

    Args:
        results: Evaluator output

    Returns:
        Comma-separated list such as "Rainfall threshold exceeded"
    """
    return ", ".join(
        f"{METRIC_LABELS[metric]} threshold exceeded"
        for metric in breached_metrics(results)
    )
