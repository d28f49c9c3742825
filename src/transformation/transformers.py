"""
Subscription Transformer

Turns billing-source payloads into SubscriptionRecord instances:

- Stripe subscriptions (customer and price expanded, or a separately
  retrieved customer)
- Manually curated subscriptions that never passed through Stripe

Every record leaves here with freshly computed classification flags.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from src.transformation.classification import (
    field_value,
    apply_classification,
    discount_percent,
    line_items_total,
    normalize_monthly,
)
from src.transformation.records import SubscriptionRecord


def unix_to_datetime(value: Any) -> Optional[datetime]:
    """Convert a unix timestamp to a naive UTC datetime"""
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def utcnow() -> datetime:
    """Current time as naive UTC, the convention for stored timestamps"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def billing_interval(subscription: Any) -> str:
    """Recurring interval of the first line item, ``month`` when unknown"""
    items = field_value(field_value(subscription, "items"), "data") or []
    if not items:
        return "month"
    recurring = field_value(field_value(items[0], "price"), "recurring")
    return field_value(recurring, "interval") or "month"


class SubscriptionTransformer:
    """
    Builds classified SubscriptionRecords.

    Example:
        transformer = SubscriptionTransformer(excluded_domains=["usebear.ai"])
        record = transformer.from_stripe(subscription)
    """

    def __init__(self, excluded_domains: Iterable[str] = ()):
        self.excluded_domains: Sequence[str] = tuple(excluded_domains)

    def from_stripe(
        self,
        subscription: Any,
        customer: Optional[Any] = None,
        status_override: Optional[str] = None,
        canceled_at_override: Optional[datetime] = None,
    ) -> SubscriptionRecord:
        """
        Normalize one Stripe subscription.

        Args:
            subscription: Stripe subscription object or dict
            customer: Customer object when ``subscription.customer`` is not expanded
            status_override: Force a status (deletion events report the last live one)
            canceled_at_override: Force a cancellation timestamp
        """
        if customer is None:
            customer = field_value(subscription, "customer")

        if isinstance(customer, str):
            customer_id = customer
            customer = None
        else:
            customer_id = field_value(customer, "id")

        amount_cents = line_items_total(subscription)
        interval = billing_interval(subscription)

        canceled_at = canceled_at_override or unix_to_datetime(field_value(subscription, "canceled_at"))

        record = SubscriptionRecord(
            subscription_id=field_value(subscription, "id"),
            customer_id=customer_id,
            customer_email=field_value(customer, "email"),
            customer_name=field_value(customer, "name"),
            status=status_override or field_value(subscription, "status") or "incomplete",
            amount_cents=amount_cents,
            billing_interval=interval,
            monthly_value=normalize_monthly(amount_cents, interval),
            discount_percent=discount_percent(subscription),
            created_at=unix_to_datetime(field_value(subscription, "created")),
            canceled_at=canceled_at,
            trial_end=unix_to_datetime(field_value(subscription, "trial_end")),
            source="stripe",
        )
        return apply_classification(record, self.excluded_domains)

    def from_manual(self, entry: Mapping[str, Any]) -> SubscriptionRecord:
        """
        Normalize a manually curated subscription.

        ``monthly_value`` is taken as given in dollars; flags are recomputed.
        """
        record = SubscriptionRecord.model_validate({**entry, "source": "manual"})
        record = record.model_copy(update={
            field: _naive_utc(getattr(record, field)) for field in ("created_at", "canceled_at", "trial_end")
        })
        if not record.monthly_value and record.amount_cents:
            record = record.model_copy(update={
                "monthly_value": normalize_monthly(record.amount_cents, record.billing_interval),
            })
        else:
            record = record.model_copy(update={
                "monthly_value": Decimal(record.monthly_value).quantize(Decimal("0.01")),
            })
        return apply_classification(record, self.excluded_domains)

    def reclassify(self, records: Iterable[SubscriptionRecord]) -> List[SubscriptionRecord]:
        """Recompute flags for already-normalized records"""
        return [apply_classification(r, self.excluded_domains) for r in records]
