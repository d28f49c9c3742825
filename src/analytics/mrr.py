"""
MRR Summary and History

Point-in-time revenue summary over the live subscriptions (plus manual
ones) and the daily HistoricalMRR series derived from it.
"""

import datetime as dt
import math
from decimal import Decimal
from typing import Iterable, List, Optional

import structlog
from pydantic import BaseModel, Field

from src.analytics.exceptions import UpstreamUnavailableError
from src.analytics.periods import reference_today
from src.config import get_settings
from src.database.repositories import MRRHistoryRepository, SubscriptionRepository
from src.ingestion.manual_subscriptions import ManualSubscriptionSource
from src.transformation.records import SubscriptionRecord
from src.transformation.transformers import SubscriptionTransformer, utcnow

logger = structlog.get_logger(__name__)


def _money(value: Decimal) -> float:
    return round(float(value), 2)


class PayingSubscription(BaseModel):
    subscription_id: str
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_display: str
    status: str
    monthly_value: float
    created_at: Optional[dt.datetime] = None
    source: str


class TrialSubscription(PayingSubscription):
    trial_end: Optional[dt.datetime] = None
    days_remaining: Optional[int] = None
    is_expired: bool = False


class OfficialMRR(BaseModel):
    total: float = 0
    subscriptions_count: int = 0
    average_per_customer: float = 0


class TrialPipeline(BaseModel):
    total_customers: int = 0
    potential_mrr: float = 0
    active_trials: int = 0
    expired_trials: int = 0
    counted_trial_mrr: float = 0


class SummaryTotals(BaseModel):
    total_active_subscriptions: int = 0
    official_mrr_total: float = 0
    trial_potential: float = 0
    conversion_opportunity: float = 0


class AnalyticsSummary(BaseModel):
    """Current revenue picture"""
    official_mrr: OfficialMRR = Field(default_factory=OfficialMRR)
    trial_pipeline: TrialPipeline = Field(default_factory=TrialPipeline)
    paying_subscriptions: List[PayingSubscription] = Field(default_factory=list)
    trial_subscriptions: List[TrialSubscription] = Field(default_factory=list)
    summary: SummaryTotals = Field(default_factory=SummaryTotals)


class MRRHistoryPoint(BaseModel):
    """One day of the MRR series"""
    date: dt.date
    official_mrr: float
    arr: float
    paying_customers_count: int
    average_customer_value: float
    trial_pipeline_mrr: float
    active_trials_count: int
    total_opportunity: float


def build_summary(records: Iterable[SubscriptionRecord], now: dt.datetime) -> AnalyticsSummary:
    """
    Summarize classified records.

    Paying subscriptions are the counted, active ones. Trials are the
    trial-counted, trialing ones; a trial whose end date has passed is
    expired and left out of the potential MRR.
    """
    records = list(records)
    paying = [r for r in records if r.is_counted and r.is_active]
    trials = [r for r in records if r.status == "trialing" and r.is_active and r.is_trial_counted]

    paying.sort(key=lambda r: (-r.monthly_value, r.subscription_id))
    trials.sort(key=lambda r: (r.trial_end is None, r.trial_end or dt.datetime.max, r.subscription_id))

    official_total = sum((r.monthly_value for r in paying), Decimal("0"))
    average = official_total / len(paying) if paying else Decimal("0")

    trial_rows = []
    potential = Decimal("0")
    expired = 0
    for r in trials:
        days_remaining = None
        is_expired = False
        if r.trial_end is not None:
            days_remaining = math.ceil((r.trial_end - now).total_seconds() / 86400)
            is_expired = days_remaining <= 0
        if is_expired:
            expired += 1
        else:
            potential += r.monthly_value
        trial_rows.append(TrialSubscription(
            subscription_id=r.subscription_id,
            customer_email=r.customer_email,
            customer_name=r.customer_name,
            customer_display=r.customer_display,
            status=r.status,
            monthly_value=_money(r.monthly_value),
            created_at=r.created_at,
            source=r.source,
            trial_end=r.trial_end,
            days_remaining=days_remaining,
            is_expired=is_expired,
        ))

    return AnalyticsSummary(
        official_mrr=OfficialMRR(
            total=_money(official_total),
            subscriptions_count=len(paying),
            average_per_customer=_money(average),
        ),
        trial_pipeline=TrialPipeline(
            total_customers=len(trials),
            potential_mrr=_money(potential),
            active_trials=len(trials) - expired,
            expired_trials=expired,
            counted_trial_mrr=_money(potential),
        ),
        paying_subscriptions=[
            PayingSubscription(
                subscription_id=r.subscription_id,
                customer_email=r.customer_email,
                customer_name=r.customer_name,
                customer_display=r.customer_display,
                status=r.status,
                monthly_value=_money(r.monthly_value),
                created_at=r.created_at,
                source=r.source,
            )
            for r in paying
        ],
        trial_subscriptions=trial_rows,
        summary=SummaryTotals(
            total_active_subscriptions=len(paying) + len(trials),
            official_mrr_total=_money(official_total),
            trial_potential=_money(potential),
            conversion_opportunity=_money(official_total + potential),
        ),
    )


class MRRHistoryRecorder:
    """
    Computes the revenue summary and keeps the daily MRR series.

    Example:
        recorder = MRRHistoryRecorder(SubscriptionRepository(factory), MRRHistoryRepository(factory))
        await recorder.record()
        points = await recorder.history(limit=30)
    """

    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        history_repository: MRRHistoryRepository,
        manual_source: Optional[ManualSubscriptionSource] = None,
        transformer: Optional[SubscriptionTransformer] = None,
    ):
        self.subscriptions = subscriptions
        self.history_repository = history_repository
        self.manual_source = manual_source or ManualSubscriptionSource()
        self.transformer = transformer or SubscriptionTransformer(
            get_settings().analytics.excluded_email_domains
        )

    async def summary(self, now: Optional[dt.datetime] = None) -> AnalyticsSummary:
        """Revenue summary with flags recomputed from the live records"""
        try:
            records = await self.subscriptions.list_all()
        except Exception as e:
            logger.error("Failed to load subscriptions for summary", error=str(e))
            raise UpstreamUnavailableError("store", str(e)) from e

        records = self.transformer.reclassify(records) + self.manual_source.load()
        return build_summary(records, now or utcnow())

    async def record(self, day: Optional[dt.date] = None) -> MRRHistoryPoint:
        """Upsert the HistoricalMRR row for ``day`` (default: today)"""
        day = day or reference_today()
        summary = await self.summary()
        official = Decimal(str(summary.official_mrr.total))

        point = MRRHistoryPoint(
            date=day,
            official_mrr=summary.official_mrr.total,
            arr=_money(official * 12),
            paying_customers_count=summary.official_mrr.subscriptions_count,
            average_customer_value=summary.official_mrr.average_per_customer,
            trial_pipeline_mrr=summary.trial_pipeline.potential_mrr,
            active_trials_count=summary.trial_pipeline.active_trials,
            total_opportunity=summary.summary.conversion_opportunity,
        )

        values = point.model_dump(exclude={"date"})
        values["mrr_date"] = day
        await self.history_repository.upsert(values)

        logger.info(
            "MRR history recorded",
            mrr_date=day.isoformat(),
            official_mrr=point.official_mrr,
            paying_customers=point.paying_customers_count,
        )
        return point

    async def history(self, limit: int = 30) -> List[MRRHistoryPoint]:
        """The most recent ``limit`` days, oldest first"""
        rows = await self.history_repository.latest(limit)
        return [
            MRRHistoryPoint(
                date=row.mrr_date,
                official_mrr=float(row.official_mrr),
                arr=float(row.arr),
                paying_customers_count=row.paying_customers_count,
                average_customer_value=float(row.average_customer_value),
                trial_pipeline_mrr=float(row.trial_pipeline_mrr),
                active_trials_count=row.active_trials_count,
                total_opportunity=float(row.total_opportunity),
            )
            for row in rows
        ]
