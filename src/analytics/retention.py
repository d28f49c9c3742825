"""
Cohort Retention

Compares the counted subscriptions of two snapshot days:

- retained = baseline & target
- churned  = baseline - target
- new      = target - baseline

The retention rate is retained / baseline * 100, zero for an empty
baseline. A baseline day without any snapshot rows is reported as
insufficient history rather than as an empty cohort.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Set, Union

import structlog
from pydantic import BaseModel, Field

from src.analytics.exceptions import UpstreamUnavailableError
from src.analytics.periods import Window, reference_today, resolve_window
from src.config import get_settings
from src.database.repositories import SnapshotRepository
from src.transformation.records import SnapshotRow

logger = structlog.get_logger(__name__)


@dataclass
class CohortComparison:
    """Set comparison between a baseline and a target cohort"""
    baseline: Dict[str, SnapshotRow]
    target: Dict[str, SnapshotRow]
    has_baseline: bool = True
    retained: Set[str] = field(default_factory=set)
    churned: Set[str] = field(default_factory=set)
    new: Set[str] = field(default_factory=set)

    @property
    def retention_rate(self) -> float:
        if not self.baseline:
            return 0.0
        return round(len(self.retained) / len(self.baseline) * 100, 2)

    @property
    def churned_mrr(self) -> Decimal:
        return sum((self.baseline[i].monthly_value for i in self.churned), Decimal("0"))


def compare_cohorts(
    baseline: Mapping[str, SnapshotRow],
    target: Mapping[str, SnapshotRow],
    has_baseline: bool = True,
) -> CohortComparison:
    """Partition two cohorts keyed by subscription id"""
    baseline_ids = set(baseline)
    target_ids = set(target)
    return CohortComparison(
        baseline=dict(baseline),
        target=dict(target),
        has_baseline=has_baseline,
        retained=baseline_ids & target_ids,
        churned=baseline_ids - target_ids,
        new=target_ids - baseline_ids,
    )


class SubscriptionDetail(BaseModel):
    subscription_id: str
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_display: str
    monthly_value: float
    status: str


class RetentionMetrics(BaseModel):
    previous_period_customers: int = 0
    current_period_customers: int = 0
    retained_customers: int = 0
    churned_customers: int = 0
    new_customers: int = 0
    churned_mrr: float = 0


class PeriodLabels(BaseModel):
    previous: date
    current: date


class RetentionReport(BaseModel):
    """Retention between two snapshot days"""
    period: str
    period_days: int
    retention_rate: float = 0
    metrics: RetentionMetrics = Field(default_factory=RetentionMetrics)
    period_labels: PeriodLabels
    has_historical_data: bool = True
    subscription_details: List[SubscriptionDetail] = Field(default_factory=list)


def _detail(row: SnapshotRow, status: str) -> SubscriptionDetail:
    return SubscriptionDetail(
        subscription_id=row.subscription_id,
        customer_id=row.customer_id,
        customer_email=row.customer_email,
        customer_name=row.customer_name,
        customer_display=row.customer_display,
        monthly_value=float(row.monthly_value),
        status=status,
    )


def build_report(comparison: CohortComparison, window: Window) -> RetentionReport:
    """Shape a comparison into the report document, churned entries first"""
    labels = PeriodLabels(previous=window.start, current=window.end)
    if not comparison.has_baseline:
        return RetentionReport(
            period=window.period,
            period_days=window.days,
            period_labels=labels,
            has_historical_data=False,
        )

    churned = [_detail(comparison.baseline[i], "churned") for i in comparison.churned]
    retained = [_detail(comparison.baseline[i], "retained") for i in comparison.retained]
    churned.sort(key=lambda d: (-d.monthly_value, d.subscription_id))
    retained.sort(key=lambda d: (-d.monthly_value, d.subscription_id))

    return RetentionReport(
        period=window.period,
        period_days=window.days,
        retention_rate=comparison.retention_rate,
        metrics=RetentionMetrics(
            previous_period_customers=len(comparison.baseline),
            current_period_customers=len(comparison.target),
            retained_customers=len(comparison.retained),
            churned_customers=len(comparison.churned),
            new_customers=len(comparison.new),
            churned_mrr=round(float(comparison.churned_mrr), 2),
        ),
        period_labels=labels,
        has_historical_data=True,
        subscription_details=churned + retained,
    )


class CohortComparator:
    """
    Retention queries over the snapshot ledger.

    Example:
        comparator = CohortComparator(SnapshotRepository(factory))
        report = await comparator.retention("7")
    """

    def __init__(self, snapshots: SnapshotRepository, exclude_trialing: bool = True):
        self.snapshots = snapshots
        self.exclude_trialing = exclude_trialing

    async def compare(self, baseline_date: date, target_date: date) -> CohortComparison:
        """
        Compare counted subscriptions at ``baseline_date`` and ``target_date``.

        Subscriptions trialing at the target are left out of the baseline
        when ``exclude_trialing`` is set.
        """
        try:
            if not await self.snapshots.has_snapshot(baseline_date):
                logger.info("No baseline snapshot", baseline_date=baseline_date.isoformat())
                return CohortComparison(baseline={}, target={}, has_baseline=False)

            baseline = await self.snapshots.counted_rows(baseline_date)
            target = await self.snapshots.counted_rows(target_date)
            trialing = set()
            if self.exclude_trialing:
                trialing = await self.snapshots.ids_with_status(target_date, "trialing")
        except UpstreamUnavailableError:
            raise
        except Exception as e:
            logger.error("Failed to read cohorts", baseline_date=baseline_date.isoformat(), error=str(e))
            raise UpstreamUnavailableError("store", str(e)) from e

        if trialing:
            baseline = {k: v for k, v in baseline.items() if k not in trialing}
        return compare_cohorts(baseline, target)

    async def retention(
        self,
        period: Union[int, str, None] = None,
        today: Optional[date] = None,
    ) -> RetentionReport:
        """Retention for a rolling or calendar window ending today"""
        settings = get_settings().analytics
        window = resolve_window(
            period,
            today or reference_today(),
            settings.retention_periods,
            settings.default_retention_period,
        )

        comparison = await self.compare(window.start, window.end)
        report = build_report(comparison, window)
        logger.info(
            "Retention computed",
            period=window.period,
            baseline_date=window.start.isoformat(),
            target_date=window.end.isoformat(),
            retention_rate=report.retention_rate,
            has_historical_data=report.has_historical_data,
        )
        return report
