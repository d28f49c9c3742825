"""
Unit Tests - Repositories
"""
from datetime import date
from decimal import Decimal

from src.serving.cache import CacheManager
from tests.factories import make_record, make_row

DAY = date(2024, 5, 10)


class TestSnapshotRepository:
    """Tests for SnapshotRepository"""

    async def test_upsert_is_keyed_by_day_and_id(self, snapshot_repo):
        await snapshot_repo.upsert_page([make_row(DAY, "a", monthly_value=Decimal("10"))])
        await snapshot_repo.upsert_page([make_row(DAY, "a", monthly_value=Decimal("20"))])

        [row] = await snapshot_repo.rows_at(DAY)
        assert row.monthly_value == Decimal("20")
        assert await snapshot_repo.count() == 1

    async def test_delete_stale(self, snapshot_repo):
        """Only rows of the given day outside the kept set are removed"""
        other = date(2024, 5, 9)
        await snapshot_repo.upsert_page([make_row(DAY, "a"), make_row(DAY, "b"), make_row(other, "b")])

        deleted = await snapshot_repo.delete_stale(DAY, ["a"])

        assert deleted == 1
        assert [r.subscription_id for r in await snapshot_repo.rows_at(DAY)] == ["a"]
        assert await snapshot_repo.count(other) == 1

    async def test_counted_rows_and_status(self, snapshot_repo):
        await snapshot_repo.upsert_page([
            make_row(DAY, "a"),
            make_row(DAY, "t", "trialing"),
            make_row(DAY, "c", "canceled"),
        ])

        assert set(await snapshot_repo.counted_rows(DAY)) == {"a"}
        assert await snapshot_repo.ids_with_status(DAY, "canceled") == {"c"}
        assert await snapshot_repo.has_snapshot(DAY)
        assert not await snapshot_repo.has_snapshot(date(2024, 5, 1))

    async def test_first_counted_dates(self, snapshot_repo):
        """Counted rows before the per-subscription bound are ignored"""
        await snapshot_repo.upsert_page([
            make_row(date(2024, 5, 1), "a"),
            make_row(date(2024, 5, 4), "a"),
            make_row(date(2024, 5, 6), "a"),
            make_row(date(2024, 5, 2), "b", "trialing"),
        ])

        result = await snapshot_repo.first_counted_dates({"a": date(2024, 5, 3), "b": date(2024, 5, 1)})

        assert result == {"a": date(2024, 5, 4)}


class TestSubscriptionRepository:
    """Tests for SubscriptionRepository"""

    async def test_list_all_sorted(self, subscription_repo):
        await subscription_repo.upsert_many([make_record("b"), make_record("a")])

        assert [r.subscription_id for r in await subscription_repo.list_all()] == ["a", "b"]

    async def test_upsert_many_empty(self, subscription_repo):
        assert await subscription_repo.upsert_many([]) == 0


class TestCacheManager:
    """Without Redis the cache falls through to the computation"""

    async def test_get_or_set_without_redis(self):
        cache = CacheManager("test")
        calls = []

        async def compute():
            calls.append(1)
            return {"value": 1}

        assert await cache.get_or_set("k", compute) == {"value": 1}
        assert await cache.get_or_set("k", compute) == {"value": 1}
        assert len(calls) == 2
        assert await cache.set("k", {"value": 2}) is False
        assert await cache.get("k") is None
