"""
Unit Tests - MRR Summary and History
"""
from datetime import date, datetime
from decimal import Decimal

from src.analytics.mrr import MRRHistoryRecorder, build_summary
from src.ingestion.manual_subscriptions import ManualSubscriptionSource
from src.transformation.transformers import SubscriptionTransformer
from tests.factories import make_record

NOW = datetime(2024, 5, 10, 12, 0)


def classified(*records):
    return SubscriptionTransformer(["usebear.ai"]).reclassify(records)


class TestBuildSummary:
    """Tests for build_summary"""

    def test_official_mrr(self):
        """Only counted active subscriptions make up official MRR"""
        records = classified(
            make_record("a", monthly_value=Decimal("100.00")),
            make_record("b", monthly_value=Decimal("50.50")),
            make_record("internal", customer_email="x@usebear.ai", monthly_value=Decimal("999.00")),
            make_record("gone", status="canceled", monthly_value=Decimal("70.00")),
        )

        summary = build_summary(records, NOW)

        assert summary.official_mrr.total == 150.5
        assert summary.official_mrr.subscriptions_count == 2
        assert summary.official_mrr.average_per_customer == 75.25
        assert [p.subscription_id for p in summary.paying_subscriptions] == ["a", "b"]

    def test_trial_pipeline(self):
        """Expired trials are listed but left out of the potential MRR"""
        records = classified(
            make_record("soon", status="trialing", trial_end=datetime(2024, 5, 13, 12, 0), monthly_value=Decimal("40.00")),
            make_record("expired", status="trialing", trial_end=datetime(2024, 5, 9), monthly_value=Decimal("60.00")),
        )

        summary = build_summary(records, NOW)

        assert summary.trial_pipeline.total_customers == 2
        assert summary.trial_pipeline.active_trials == 1
        assert summary.trial_pipeline.expired_trials == 1
        assert summary.trial_pipeline.potential_mrr == 40.0
        trials = {t.subscription_id: t for t in summary.trial_subscriptions}
        assert trials["soon"].days_remaining == 3
        assert trials["expired"].is_expired

    def test_summary_totals(self):
        records = classified(
            make_record("a", monthly_value=Decimal("100.00")),
            make_record("t", status="trialing", trial_end=datetime(2024, 6, 1), monthly_value=Decimal("25.00")),
        )

        summary = build_summary(records, NOW)

        assert summary.summary.total_active_subscriptions == 2
        assert summary.summary.official_mrr_total == 100.0
        assert summary.summary.trial_potential == 25.0
        assert summary.summary.conversion_opportunity == 125.0

    def test_empty(self):
        summary = build_summary([], NOW)
        assert summary.official_mrr.total == 0
        assert summary.official_mrr.average_per_customer == 0


class TestMRRHistoryRecorder:
    """Tests for MRRHistoryRecorder"""

    async def test_summary_includes_manual(self, subscription_repo, mrr_repo):
        """Manual subscriptions are part of the official MRR"""
        await subscription_repo.upsert_many([make_record("a", monthly_value=Decimal("100.00"))])
        manual = ManualSubscriptionSource(entries=[{"subscription_id": "m", "monthly_value": 20}])
        recorder = MRRHistoryRecorder(subscription_repo, mrr_repo, manual_source=manual)

        summary = await recorder.summary(now=NOW)

        assert summary.official_mrr.total == 120.0
        assert {p.source for p in summary.paying_subscriptions} == {"stripe", "manual"}

    async def test_record_and_history(self, subscription_repo, mrr_repo, no_manual):
        """Each day is upserted once and history is oldest first"""
        await subscription_repo.upsert_many([make_record("a", monthly_value=Decimal("100.00"))])
        recorder = MRRHistoryRecorder(subscription_repo, mrr_repo, manual_source=no_manual)

        await recorder.record(date(2024, 5, 9))
        await subscription_repo.upsert_many([make_record("b", monthly_value=Decimal("50.00"))])
        await recorder.record(date(2024, 5, 10))
        point = await recorder.record(date(2024, 5, 10))

        assert point.arr == 1800.0
        history = await recorder.history(limit=30)
        assert [p.date for p in history] == [date(2024, 5, 9), date(2024, 5, 10)]
        assert [p.official_mrr for p in history] == [100.0, 150.0]
        assert history[1].paying_customers_count == 2

    async def test_history_limit(self, subscription_repo, mrr_repo, no_manual):
        """The limit keeps the most recent days"""
        recorder = MRRHistoryRecorder(subscription_repo, mrr_repo, manual_source=no_manual)
        for d in (7, 8, 9, 10):
            await recorder.record(date(2024, 5, d))

        history = await recorder.history(limit=2)

        assert [p.date for p in history] == [date(2024, 5, 9), date(2024, 5, 10)]
