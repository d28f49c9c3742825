"""
Revenue Classification

Pure functions deciding how a subscription contributes to official
recurring revenue:

- Monthly normalization of billed amounts
- Discount percentage from coupon data
- Active / counted / trial-counted eligibility flags

Nothing here raises on malformed input; bad data falls through to the
excluded branch.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Mapping, Optional

from src.transformation.records import SubscriptionRecord

CENTS = Decimal("0.01")

ACTIVE_STATUSES = frozenset({"active", "trialing", "past_due"})

# (multiplier, divisor) from one billing interval to one month
MONTHLY_FACTORS = {
    "month": (Decimal("1"), Decimal("1")),
    "year": (Decimal("1"), Decimal("12")),
    "week": (Decimal("4.33"), Decimal("1")),
    "day": (Decimal("30"), Decimal("1")),
}


@dataclass(frozen=True)
class Classification:
    """Eligibility flags for one subscription"""
    is_active: bool
    is_counted: bool
    is_trial_counted: bool


def field_value(obj: Any, key: str) -> Any:
    """Read a field from a Stripe object, a dict or a plain object"""
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(key)
    return getattr(obj, key, None)


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    return d if d.is_finite() else None


def normalize_monthly(amount_cents: Any, interval: Optional[str]) -> Decimal:
    """
    Convert an amount billed per ``interval`` (in cents) to dollars per month.

    Unknown or missing intervals are treated as already monthly.

    Examples:
        normalize_monthly(120000, "year") -> Decimal("100.00")
        normalize_monthly(70000, "week") -> Decimal("3031.00")
    """
    amount = _to_decimal(amount_cents)
    if amount is None:
        return Decimal("0.00")

    dollars = amount / Decimal("100")
    multiplier, divisor = MONTHLY_FACTORS.get(str(interval or "").lower(), MONTHLY_FACTORS["month"])
    return (dollars * multiplier / divisor).quantize(CENTS, rounding=ROUND_HALF_UP)


def line_items_total(subscription: Any) -> int:
    """Sum of ``unit_amount * quantity`` over a Stripe subscription's items"""
    items = field_value(field_value(subscription, "items"), "data") or []
    total = 0
    for item in items:
        unit_amount = field_value(field_value(item, "price"), "unit_amount") or 0
        quantity = field_value(item, "quantity")
        quantity = 1 if quantity is None else quantity
        try:
            total += int(unit_amount) * int(quantity)
        except (TypeError, ValueError):
            continue
    return total


def discount_percent(subscription: Any) -> float:
    """
    Effective discount of a Stripe subscription as a percentage in [0, 100].

    Percent-off coupons are returned as-is; amount-off coupons are expressed
    relative to the subscription's line-item total.
    """
    coupon = field_value(field_value(subscription, "discount"), "coupon")
    if not coupon:
        return 0

    try:
        percent_off = _to_decimal(field_value(coupon, "percent_off"))
        if percent_off:
            return float(min(max(percent_off, Decimal("0")), Decimal("100")))

        amount_off = _to_decimal(field_value(coupon, "amount_off"))
        if amount_off:
            base = line_items_total(subscription)
            if base <= 0:
                return 0
            percent = (amount_off / Decimal(base) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
            return float(min(max(percent, Decimal("0")), Decimal("100")))
    except (InvalidOperation, ArithmeticError, TypeError, ValueError):
        return 0

    return 0


def is_active_status(status: Any) -> bool:
    return isinstance(status, str) and status in ACTIVE_STATUSES


def is_excluded_email(email: Optional[str], excluded_domains: Iterable[str]) -> bool:
    """True when the email belongs to an excluded domain or one of its subdomains"""
    if not email or not isinstance(email, str):
        return False
    domain = email.strip().lower().rpartition("@")[2]
    for excluded in excluded_domains:
        if domain == excluded or domain.endswith("." + excluded):
            return True
    return False


def _is_eligible(record: Any, required_status: str, excluded_domains: Iterable[str]) -> bool:
    if field_value(record, "status") != required_status:
        return False
    if field_value(record, "canceled_at"):
        return False

    # a missing discount is none; an unreadable one excludes
    raw_percent = field_value(record, "discount_percent")
    percent = Decimal("0") if raw_percent is None else _to_decimal(raw_percent)
    if percent is None or percent >= 100:
        return False

    return not is_excluded_email(field_value(record, "customer_email"), excluded_domains)


def is_counted(record: Any, excluded_domains: Iterable[str] = ()) -> bool:
    """Whether a subscription counts toward official MRR"""
    return _is_eligible(record, "active", excluded_domains)


def is_trial_counted(record: Any, excluded_domains: Iterable[str] = ()) -> bool:
    """Whether a trialing subscription counts toward the trial pipeline"""
    return _is_eligible(record, "trialing", excluded_domains)


def classify(record: Any, excluded_domains: Iterable[str] = ()) -> Classification:
    domains = tuple(excluded_domains)
    return Classification(
        is_active=is_active_status(field_value(record, "status")),
        is_counted=is_counted(record, domains),
        is_trial_counted=is_trial_counted(record, domains),
    )


def apply_classification(
    record: SubscriptionRecord,
    excluded_domains: Iterable[str] = (),
) -> SubscriptionRecord:
    """Return a copy of ``record`` with freshly computed flags"""
    flags = classify(record, excluded_domains)
    return record.model_copy(update={
        "is_active": flags.is_active,
        "is_counted": flags.is_counted,
        "is_trial_counted": flags.is_trial_counted,
    })
