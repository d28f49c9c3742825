"""
Unit Tests - Revenue Classification
"""
from datetime import datetime
from decimal import Decimal

import pytest

from src.transformation.classification import (
    classify,
    discount_percent,
    is_active_status,
    is_counted,
    is_excluded_email,
    is_trial_counted,
    line_items_total,
    normalize_monthly,
)
from tests.factories import make_record, stripe_subscription


class TestNormalizeMonthly:
    """Tests for normalize_monthly"""

    def test_monthly_amount(self):
        """Monthly amounts are converted from cents only"""
        assert normalize_monthly(4999, "month") == Decimal("49.99")

    def test_yearly_amount(self):
        """Yearly amounts are spread over twelve months"""
        assert normalize_monthly(120000, "year") == Decimal("100.00")

    def test_yearly_amount_rounds_to_cents(self):
        """Uneven yearly amounts round half up to the cent"""
        assert normalize_monthly(99900, "year") == Decimal("83.25")

    def test_weekly_amount(self):
        """Weekly amounts use 4.33 weeks per month"""
        assert normalize_monthly(70000, "week") == Decimal("3031.00")

    def test_daily_amount(self):
        """Daily amounts use 30 days per month"""
        assert normalize_monthly(1000, "day") == Decimal("300.00")

    @pytest.mark.parametrize("interval", [None, "", "fortnight"])
    def test_unknown_interval_is_monthly(self, interval):
        """Unknown intervals are treated as already monthly"""
        assert normalize_monthly(2500, interval) == Decimal("25.00")

    def test_malformed_amount(self):
        """Non-numeric amounts normalize to zero"""
        assert normalize_monthly("abc", "month") == Decimal("0.00")
        assert normalize_monthly(None, "year") == Decimal("0.00")

    @pytest.mark.parametrize("amount", ["Infinity", "-Infinity", "NaN", float("inf")])
    def test_non_finite_amount(self, amount):
        assert normalize_monthly(amount, "month") == Decimal("0.00")


class TestDiscountPercent:
    """Tests for discount_percent"""

    def test_no_discount(self):
        """No coupon means no discount"""
        assert discount_percent(stripe_subscription("sub_1")) == 0

    def test_percent_off(self):
        """Percent-off coupons are returned directly"""
        subscription = stripe_subscription("sub_1", coupon={"percent_off": 25})
        assert discount_percent(subscription) == 25

    def test_amount_off(self):
        """$50 off a $100 subscription is a 50% discount"""
        subscription = stripe_subscription("sub_1", unit_amount=10000, coupon={"amount_off": 5000})
        assert discount_percent(subscription) == 50

    def test_amount_off_uses_quantity(self):
        """The base amount includes the item quantity"""
        subscription = stripe_subscription("sub_1", unit_amount=5000, quantity=4, coupon={"amount_off": 5000})
        assert discount_percent(subscription) == 25

    def test_amount_off_zero_base(self):
        """A zero line-item total gives no discount"""
        subscription = stripe_subscription("sub_1", unit_amount=0, coupon={"amount_off": 5000})
        assert discount_percent(subscription) == 0

    def test_amount_off_clamped(self):
        """Coupons larger than the subscription clamp to 100"""
        subscription = stripe_subscription("sub_1", unit_amount=1000, coupon={"amount_off": 5000})
        assert discount_percent(subscription) == 100

    def test_malformed_coupon(self):
        """Malformed coupon data never raises"""
        subscription = stripe_subscription("sub_1", coupon={"percent_off": "lots"})
        assert discount_percent(subscription) == 0
        assert discount_percent(stripe_subscription("sub_1", coupon={"percent_off": "NaN"})) == 0
        assert discount_percent(stripe_subscription("sub_1", coupon={"amount_off": "Infinity"})) == 0

    def test_line_items_total(self):
        """Items are summed as unit amount times quantity"""
        subscription = stripe_subscription("sub_1", unit_amount=1500, quantity=3)
        assert line_items_total(subscription) == 4500


class TestEligibility:
    """Tests for counted and trial-counted flags"""

    def test_active_status_set(self):
        """Active, trialing and past_due count as active statuses"""
        assert is_active_status("active")
        assert is_active_status("trialing")
        assert is_active_status("past_due")
        assert not is_active_status("canceled")

    @pytest.mark.parametrize("status", [["active"], {"status": "active"}, None, 1])
    def test_non_string_status_is_inactive(self, status):
        assert not is_active_status(status)

    def test_active_subscription_is_counted(self):
        """A plain active subscription is counted"""
        record = make_record("sub_1")
        assert is_counted(record)
        assert not is_trial_counted(record)

    def test_trialing_subscription_is_trial_counted(self):
        """A trialing subscription goes to the trial pipeline"""
        record = make_record("sub_1", status="trialing")
        assert is_trial_counted(record)
        assert not is_counted(record)

    def test_canceled_at_excludes(self):
        """A scheduled cancellation excludes the subscription"""
        record = make_record("sub_1", canceled_at=datetime(2024, 5, 1))
        assert not is_counted(record)

    def test_full_discount_excludes(self):
        """A 100% discount is not revenue"""
        record = make_record("sub_1", discount_percent=100)
        assert not is_counted(record)

    @pytest.mark.parametrize("percent", ["NaN", "Infinity", "abc", float("nan")])
    def test_unreadable_discount_excludes(self, percent):
        """Malformed discounts fall to the excluded branch"""
        record = {"status": "active", "discount_percent": percent}
        assert not is_counted(record)
        assert not is_trial_counted({**record, "status": "trialing"})

    def test_partial_discount_still_counted(self):
        """Anything under 100% still counts"""
        record = make_record("sub_1", discount_percent=99.5)
        assert is_counted(record)

    def test_excluded_domain(self):
        """Internal email domains never count"""
        record = make_record("sub_1", customer_email="founder@usebear.ai")
        assert not is_counted(record, ["usebear.ai"])
        assert is_counted(record, ["example.org"])

    def test_excluded_subdomain(self):
        """Subdomains of an excluded domain are excluded too"""
        assert is_excluded_email("ops@mail.usebear.ai", ["usebear.ai"])
        assert not is_excluded_email("ops@notusebear.ai", ["usebear.ai"])

    def test_missing_email_not_excluded(self):
        """A subscription without an email is still eligible"""
        record = make_record("sub_1", customer_email=None)
        assert is_counted(record, ["usebear.ai"])

    @pytest.mark.parametrize("status", ["active", "trialing", "past_due", "canceled", "unpaid"])
    def test_flags_disjoint(self, status):
        """A subscription is never both counted and trial-counted"""
        flags = classify(make_record("sub_1", status=status))
        assert not (flags.is_counted and flags.is_trial_counted)

    def test_past_due_is_active_but_not_counted(self):
        """Past due keeps the subscription active without counting it"""
        flags = classify(make_record("sub_1", status="past_due"))
        assert flags.is_active
        assert not flags.is_counted
