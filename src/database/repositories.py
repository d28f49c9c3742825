"""
Ledger Repositories

Async data access for the subscription table, the daily snapshot ledger
and the MRR history. Each public call runs in its own transaction obtained
from the injected session factory, so a failure in one call never poisons
the next.
"""

from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from src.database.connection import SessionFactory
from src.database.models import HistoricalMRR, Subscription, SubscriptionSnapshot
from src.transformation.records import SnapshotRow, SubscriptionRecord

logger = structlog.get_logger(__name__)

SUBSCRIPTION_COLUMNS = (
    "customer_id",
    "customer_email",
    "customer_name",
    "status",
    "amount_cents",
    "billing_interval",
    "monthly_value",
    "discount_percent",
    "created_at",
    "canceled_at",
    "trial_end",
    "is_active",
    "is_counted",
    "is_trial_counted",
    "source",
)

SNAPSHOT_COLUMNS = (
    "customer_id",
    "customer_email",
    "customer_name",
    "status",
    "monthly_value",
    "discount_percent",
    "is_active",
    "is_counted",
    "is_trial_counted",
)

MRR_COLUMNS = (
    "official_mrr",
    "arr",
    "paying_customers_count",
    "average_customer_value",
    "trial_pipeline_mrr",
    "active_trials_count",
    "total_opportunity",
)


def upsert_statement(
    session: AsyncSession,
    model: Any,
    values: Sequence[Dict[str, Any]],
    index_elements: Sequence[str],
    update_columns: Iterable[str],
    extra_updates: Optional[Mapping[str, Any]] = None,
):
    """
    Build an INSERT ... ON CONFLICT DO UPDATE for the session's dialect.

    PostgreSQL in production, SQLite for local runs and tests.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        insert = postgresql.insert
    elif dialect == "sqlite":
        insert = sqlite.insert
    else:
        raise NotImplementedError(f"Upsert not supported for dialect {dialect}")

    stmt = insert(model).values(list(values))
    set_ = {col: getattr(stmt.excluded, col) for col in update_columns}
    if extra_updates:
        set_.update(extra_updates)
    return stmt.on_conflict_do_update(index_elements=list(index_elements), set_=set_)


class SubscriptionRepository:
    """Live subscription state keyed by subscription id"""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def upsert(self, record: SubscriptionRecord) -> None:
        await self.upsert_many([record])

    async def upsert_many(self, records: Sequence[SubscriptionRecord]) -> int:
        if not records:
            return 0

        values = [
            {"subscription_id": r.subscription_id, **{c: getattr(r, c) for c in SUBSCRIPTION_COLUMNS}}
            for r in records
        ]
        async with self.session_factory() as session:
            stmt = upsert_statement(
                session,
                Subscription,
                values,
                index_elements=["subscription_id"],
                update_columns=SUBSCRIPTION_COLUMNS,
                extra_updates={"updated_at": func.now()},
            )
            await session.execute(stmt)
        return len(values)

    async def get(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        async with self.session_factory() as session:
            row = await session.get(Subscription, subscription_id)
            return SubscriptionRecord.model_validate(row) if row else None

    async def list_all(self) -> List[SubscriptionRecord]:
        async with self.session_factory() as session:
            result = await session.execute(select(Subscription).order_by(Subscription.subscription_id))
            return [SubscriptionRecord.model_validate(row) for row in result.scalars().all()]


class SnapshotRepository:
    """
    Daily snapshot ledger.

    Rows are unique per ``(snapshot_date, subscription_id)``; writes are
    upserts so a rerun for the same day converges on the same set.
    """

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def upsert_page(self, rows: Sequence[SnapshotRow]) -> int:
        if not rows:
            return 0

        values = [
            {
                "snapshot_date": r.snapshot_date,
                "subscription_id": r.subscription_id,
                **{c: getattr(r, c) for c in SNAPSHOT_COLUMNS},
            }
            for r in rows
        ]
        async with self.session_factory() as session:
            stmt = upsert_statement(
                session,
                SubscriptionSnapshot,
                values,
                index_elements=["snapshot_date", "subscription_id"],
                update_columns=SNAPSHOT_COLUMNS,
                extra_updates={"recorded_at": func.now()},
            )
            await session.execute(stmt)
        return len(values)

    async def delete_stale(self, snapshot_date: date, keep_ids: Iterable[str]) -> int:
        """Delete rows of ``snapshot_date`` whose subscription is not in ``keep_ids``"""
        keep = list(set(keep_ids))
        stmt = delete(SubscriptionSnapshot).where(SubscriptionSnapshot.snapshot_date == snapshot_date)
        if keep:
            stmt = stmt.where(SubscriptionSnapshot.subscription_id.not_in(keep))

        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return result.rowcount or 0

    async def has_snapshot(self, snapshot_date: date) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SubscriptionSnapshot.snapshot_id)
                .where(SubscriptionSnapshot.snapshot_date == snapshot_date)
                .limit(1)
            )
            return result.first() is not None

    async def count(self, snapshot_date: Optional[date] = None) -> int:
        query = select(func.count()).select_from(SubscriptionSnapshot)
        if snapshot_date is not None:
            query = query.where(SubscriptionSnapshot.snapshot_date == snapshot_date)
        async with self.session_factory() as session:
            return (await session.execute(query)).scalar_one()

    async def snapshot_dates(self, start: date, end: date) -> Set[date]:
        """Distinct dates in ``[start, end]`` that hold at least one row"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(SubscriptionSnapshot.snapshot_date)
                .where(SubscriptionSnapshot.snapshot_date.between(start, end))
                .distinct()
            )
            return set(result.scalars().all())

    async def rows_at(self, snapshot_date: date) -> List[SnapshotRow]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SubscriptionSnapshot)
                .where(SubscriptionSnapshot.snapshot_date == snapshot_date)
                .order_by(SubscriptionSnapshot.subscription_id)
            )
            return [SnapshotRow.model_validate(row) for row in result.scalars().all()]

    async def counted_rows(self, snapshot_date: date) -> Dict[str, SnapshotRow]:
        """Counted subscriptions at ``snapshot_date`` keyed by subscription id"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(SubscriptionSnapshot).where(
                    SubscriptionSnapshot.snapshot_date == snapshot_date,
                    SubscriptionSnapshot.is_counted.is_(True),
                )
            )
            rows = [SnapshotRow.model_validate(row) for row in result.scalars().all()]
        return {row.subscription_id: row for row in rows}

    async def ids_with_status(self, snapshot_date: date, status: str) -> Set[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SubscriptionSnapshot.subscription_id).where(
                    SubscriptionSnapshot.snapshot_date == snapshot_date,
                    SubscriptionSnapshot.status == status,
                )
            )
            return set(result.scalars().all())

    async def trial_rows_between(self, start: date, end: date) -> List[SnapshotRow]:
        """Trial-counted rows in ``[start, end]``, oldest first"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(SubscriptionSnapshot)
                .where(
                    SubscriptionSnapshot.snapshot_date.between(start, end),
                    SubscriptionSnapshot.is_trial_counted.is_(True),
                )
                .order_by(SubscriptionSnapshot.snapshot_date, SubscriptionSnapshot.subscription_id)
            )
            return [SnapshotRow.model_validate(row) for row in result.scalars().all()]

    async def first_counted_dates(self, since: Mapping[str, date]) -> Dict[str, date]:
        """
        Earliest counted snapshot date per subscription.

        Args:
            since: subscription id -> lower bound (inclusive)

        Returns:
            Mapping for the subscriptions that have a counted row on or after
            their bound; others are absent.
        """
        if not since:
            return {}

        async with self.session_factory() as session:
            result = await session.execute(
                select(SubscriptionSnapshot.subscription_id, SubscriptionSnapshot.snapshot_date)
                .where(
                    SubscriptionSnapshot.subscription_id.in_(list(since)),
                    SubscriptionSnapshot.is_counted.is_(True),
                    SubscriptionSnapshot.snapshot_date >= min(since.values()),
                )
                .order_by(SubscriptionSnapshot.snapshot_date)
            )
            pairs = result.all()

        earliest: Dict[str, date] = {}
        for subscription_id, snapshot_date in pairs:
            if subscription_id in earliest or snapshot_date < since[subscription_id]:
                continue
            earliest[subscription_id] = snapshot_date
        return earliest


class MRRHistoryRepository:
    """One HistoricalMRR row per day"""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    async def upsert(self, values: Dict[str, Any]) -> None:
        async with self.session_factory() as session:
            stmt = upsert_statement(
                session,
                HistoricalMRR,
                [values],
                index_elements=["mrr_date"],
                update_columns=MRR_COLUMNS,
                extra_updates={"computed_at": func.now()},
            )
            await session.execute(stmt)

    async def latest(self, limit: int = 30) -> List[HistoricalMRR]:
        """The ``limit`` most recent rows, oldest first"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(HistoricalMRR).order_by(HistoricalMRR.mrr_date.desc()).limit(limit)
            )
            rows = list(result.scalars().all())
        return list(reversed(rows))
