"""
Trial Conversion

Finds the subscriptions that were trial-counted inside a lookback window
and decides, for each one that is no longer trialing, whether it turned
into paid revenue:

1. Ledger evidence: a counted snapshot on or after the first trial day
2. Payment history: a captured, non-refunded, non-blocked payment

Subscriptions still trialing today are pending and stay out of the rate.
"""

import asyncio
from datetime import date, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

import structlog
from prometheus_client import Counter
from pydantic import BaseModel, Field

from src.analytics.exceptions import UpstreamUnavailableError
from src.analytics.periods import reference_today, resolve_days
from src.config import get_settings
from src.database.repositories import SnapshotRepository
from src.ingestion.billing_client import BillingClient
from src.transformation.classification import field_value
from src.transformation.records import SnapshotRow

logger = structlog.get_logger(__name__)


PAYMENT_CHECKS = Counter(
    "trial_payment_checks_total",
    "Payment-history lookups made by the conversion verifier",
    ["result"],
)


class TrialOutcome(str, Enum):
    CONVERTED = "converted"
    LOST = "lost"
    PENDING = "pending"


def charge_succeeded(charge: Any) -> bool:
    """Captured, unrefunded and not blocked by fraud screening"""
    if field_value(charge, "status") != "succeeded":
        return False
    if field_value(charge, "refunded") or (field_value(charge, "amount_refunded") or 0) != 0:
        return False
    if field_value(charge, "blocked"):
        return False
    return field_value(field_value(charge, "outcome"), "type") != "blocked"


def _ref_id(ref: Any) -> Optional[str]:
    if ref is None or isinstance(ref, str):
        return ref
    return field_value(ref, "id")


class PaymentVerifier:
    """
    Authoritative paid-or-not check against the billing source.

    Results are memoized per customer for the lifetime of the instance;
    the conversion verifier creates one per run.
    """

    def __init__(self, client: BillingClient):
        self.client = client
        self._results: Dict[str, bool] = {}

    async def _check(self, customer_id: str) -> bool:
        invoices = await self.client.list_invoices(customer_id, limit=100)
        for invoice in invoices:
            if field_value(invoice, "status") != "paid" or not (field_value(invoice, "amount_paid") or 0) > 0:
                continue

            charge_id = _ref_id(field_value(invoice, "charge"))
            payment_intent_id = _ref_id(field_value(invoice, "payment_intent"))

            if charge_id:
                charge = await self.client.retrieve_charge(charge_id)
                if charge_succeeded(charge):
                    return True
            elif payment_intent_id:
                intent = await self.client.retrieve_payment_intent(payment_intent_id)
                if field_value(intent, "status") != "succeeded":
                    continue
                refunds = await self.client.list_refunds(payment_intent_id, limit=100)
                refunded = sum(field_value(r, "amount") or 0 for r in refunds)
                if refunded < (field_value(intent, "amount") or 0):
                    return True
        return False

    async def has_successful_payment(self, customer_id: Optional[str]) -> bool:
        """
        True when the customer has at least one successful payment.

        Lookup failures are logged and reported as not paid.
        """
        if not customer_id:
            return False
        if customer_id in self._results:
            return self._results[customer_id]

        try:
            paid = await self._check(customer_id)
            PAYMENT_CHECKS.labels(result="paid" if paid else "unpaid").inc()
        except Exception as e:
            paid = False
            PAYMENT_CHECKS.labels(result="error").inc()
            logger.warning("Payment history lookup failed", customer_id=customer_id, error=str(e))

        self._results[customer_id] = paid
        return paid

    async def verify_many(self, customer_ids: Iterable[Optional[str]]) -> Dict[str, bool]:
        """Check several customers concurrently"""
        unique = [c for c in dict.fromkeys(customer_ids) if c]
        results = await asyncio.gather(*(self.has_successful_payment(c) for c in unique))
        return dict(zip(unique, results))


class TrialDetail(BaseModel):
    subscription_id: str
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_display: str
    monthly_value: float
    first_trial_date: date
    converted: bool = False
    conversion_date: Optional[date] = None
    outcome: TrialOutcome


class ConversionMetrics(BaseModel):
    total_trials: int = 0
    converted_trials: int = 0
    unconverted_trials: int = 0
    pending_trials: int = 0


class ConversionLabels(BaseModel):
    start: date
    end: date


class ConversionReport(BaseModel):
    """Trial conversion over a lookback window"""
    period: str
    period_days: int
    lookback_days: int
    conversion_rate: float = 0
    metrics: ConversionMetrics = Field(default_factory=ConversionMetrics)
    period_labels: ConversionLabels
    has_historical_data: bool = True
    trial_details: List[TrialDetail] = Field(default_factory=list)


def first_trials(rows: Iterable[SnapshotRow]) -> Dict[str, SnapshotRow]:
    """Earliest trial-counted row per subscription"""
    earliest: Dict[str, SnapshotRow] = {}
    for row in rows:
        current = earliest.get(row.subscription_id)
        if current is None or row.snapshot_date < current.snapshot_date:
            earliest[row.subscription_id] = row
    return earliest


class ConversionVerifier:
    """
    Trial conversion queries over the snapshot ledger.

    Example:
        verifier = ConversionVerifier(SnapshotRepository(factory), StripeBillingClient())
        report = await verifier.conversion(14)
    """

    def __init__(self, snapshots: SnapshotRepository, client: Optional[BillingClient] = None):
        self.snapshots = snapshots
        self.client = client

    async def conversion(
        self,
        period: Union[int, str, None] = None,
        today: Optional[date] = None,
    ) -> ConversionReport:
        settings = get_settings().analytics
        days = resolve_days(period, settings.conversion_periods, settings.default_conversion_period)
        lookback_days = days + 1
        today = today or reference_today()
        start = today - timedelta(days=lookback_days)

        report = ConversionReport(
            period=f"{days}day",
            period_days=days,
            lookback_days=lookback_days,
            period_labels=ConversionLabels(start=start, end=today),
        )

        try:
            if not await self.snapshots.has_snapshot(start):
                logger.info("No snapshot at lookback start", lookback_date=start.isoformat())
                report.has_historical_data = False
                return report

            trials = first_trials(await self.snapshots.trial_rows_between(start, today))
            pending_ids = await self.snapshots.ids_with_status(today, "trialing") & set(trials)
            decided = {sid: row for sid, row in trials.items() if sid not in pending_ids}
            ledger = await self.snapshots.first_counted_dates(
                {sid: row.snapshot_date for sid, row in decided.items()}
            )
        except UpstreamUnavailableError:
            raise
        except Exception as e:
            logger.error("Failed to read trial cohort", lookback_date=start.isoformat(), error=str(e))
            raise UpstreamUnavailableError("store", str(e)) from e

        unresolved = [row for sid, row in decided.items() if sid not in ledger]
        paid: Dict[str, bool] = {}
        if unresolved:
            if self.client is None:
                raise UpstreamUnavailableError("billing", "payment history client is not configured")
            paid = await PaymentVerifier(self.client).verify_many(r.customer_id for r in unresolved)

        converted: List[TrialDetail] = []
        lost: List[TrialDetail] = []
        for sid, row in decided.items():
            conversion_date = ledger.get(sid)
            is_converted = conversion_date is not None or paid.get(row.customer_id or "", False)
            detail = TrialDetail(
                subscription_id=sid,
                customer_id=row.customer_id,
                customer_email=row.customer_email,
                customer_name=row.customer_name,
                customer_display=row.customer_display,
                monthly_value=float(row.monthly_value),
                first_trial_date=row.snapshot_date,
                converted=is_converted,
                conversion_date=conversion_date,
                outcome=TrialOutcome.CONVERTED if is_converted else TrialOutcome.LOST,
            )
            (converted if is_converted else lost).append(detail)

        converted.sort(key=lambda d: (-d.monthly_value, d.subscription_id))
        lost.sort(key=lambda d: (-d.monthly_value, d.subscription_id))

        decided_count = len(converted) + len(lost)
        report.conversion_rate = round(len(converted) / decided_count * 100, 2) if decided_count else 0
        report.metrics = ConversionMetrics(
            total_trials=decided_count,
            converted_trials=len(converted),
            unconverted_trials=len(lost),
            pending_trials=len(pending_ids),
        )
        report.trial_details = converted + lost

        logger.info(
            "Trial conversion computed",
            period_days=days,
            total_trials=decided_count,
            converted=len(converted),
            pending=len(pending_ids),
            ledger_resolved=len(ledger),
            payment_checked=len(paid),
        )
        return report
