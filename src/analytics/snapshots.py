"""
Daily Snapshot Recorder

Writes one ledger row per subscription for a reporting day. Flags are
recomputed from the live records on every run, then the day's row set is
upserted page by page and rows for subscriptions no longer present are
removed. Running twice for the same day converges on the same set.
"""

import time
from datetime import date, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

import structlog
from prometheus_client import Counter
from pydantic import BaseModel, Field

from src.analytics.exceptions import UpstreamUnavailableError
from src.analytics.periods import date_range, reference_today
from src.config import get_settings
from src.database.repositories import SnapshotRepository, SubscriptionRepository
from src.ingestion.manual_subscriptions import ManualSubscriptionSource
from src.quality.validators import DataValidator, ValidationStatus, create_snapshot_validator, snapshot_frame
from src.transformation.records import SnapshotRow, SubscriptionRecord
from src.transformation.transformers import SubscriptionTransformer

logger = structlog.get_logger(__name__)


SNAPSHOT_ROWS = Counter(
    "snapshot_rows_total",
    "Snapshot rows processed by the recorder",
    ["outcome"],
)


class SnapshotRunStatus(str, Enum):
    """Snapshot run status"""
    COMPLETED = "completed"
    PARTIAL = "partial"


class SnapshotRunResult(BaseModel):
    """Result of recording one day"""
    snapshot_date: date
    status: SnapshotRunStatus
    rows_written: int = 0
    rows_failed: int = 0
    pages_failed: int = 0
    stale_rows_removed: int = 0
    stale_cleanup_failed: bool = False
    validation_status: Optional[ValidationStatus] = None
    duration_seconds: float = 0


class BackfillResult(BaseModel):
    """Result of a snapshot backfill"""
    days_recorded: List[date] = Field(default_factory=list)
    days_skipped: List[date] = Field(default_factory=list)
    runs: List[SnapshotRunResult] = Field(default_factory=list)


def reconstruct(records: Iterable[SubscriptionRecord], day: date) -> List[SubscriptionRecord]:
    """
    Approximate the state of ``records`` as of ``day``.

    A subscription existed on ``day`` when it was created on or before it
    and not canceled on or before it. Existing subscriptions are reported
    as trialing while their trial had not ended yet, otherwise active.
    Flags are left for the caller to recompute.
    """
    state = []
    for record in records:
        if record.created_at is not None and record.created_at.date() > day:
            continue
        if record.canceled_at is not None and record.canceled_at.date() <= day:
            continue

        status = record.status
        if status in ("active", "trialing", "canceled"):
            in_trial = record.trial_end is not None and day < record.trial_end.date()
            status = "trialing" if in_trial else "active"

        state.append(record.model_copy(update={"status": status, "canceled_at": None}))
    return state


class SnapshotRecorder:
    """
    Records the daily subscription snapshot.

    Example:
        recorder = SnapshotRecorder(SubscriptionRepository(factory), SnapshotRepository(factory))
        result = await recorder.record()
    """

    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        snapshots: SnapshotRepository,
        manual_source: Optional[ManualSubscriptionSource] = None,
        transformer: Optional[SubscriptionTransformer] = None,
        page_size: Optional[int] = None,
        validator_factory: Callable[[], DataValidator] = create_snapshot_validator,
    ):
        settings = get_settings().analytics
        self.subscriptions = subscriptions
        self.snapshots = snapshots
        self.manual_source = manual_source or ManualSubscriptionSource()
        self.transformer = transformer or SubscriptionTransformer(settings.excluded_email_domains)
        self.page_size = page_size or settings.snapshot_page_size
        self.validator_factory = validator_factory

    async def load_records(self) -> List[SubscriptionRecord]:
        """All live records plus the manual ones; any failure aborts the run"""
        try:
            records = await self.subscriptions.list_all()
        except UpstreamUnavailableError:
            raise
        except Exception as e:
            logger.error("Failed to load subscriptions for snapshot", error=str(e))
            raise UpstreamUnavailableError("store", str(e)) from e

        manual = self.manual_source.load()
        return records + manual

    def build_rows(self, records: Iterable[SubscriptionRecord], day: date) -> List[SnapshotRow]:
        """Reclassify records and turn them into one row per subscription"""
        rows: Dict[str, SnapshotRow] = {}
        for record in self.transformer.reclassify(records):
            if record.subscription_id in rows:
                logger.warning(
                    "Duplicate subscription in snapshot batch, keeping first",
                    subscription_id=record.subscription_id,
                    source=record.source,
                )
                continue
            rows[record.subscription_id] = SnapshotRow.from_record(record, day)
        return list(rows.values())

    async def record(self, day: Optional[date] = None) -> SnapshotRunResult:
        """Snapshot the live subscription state for ``day`` (default: today)"""
        day = day or reference_today()
        records = await self.load_records()
        return await self.write(day, records)

    async def write(self, day: date, records: Iterable[SubscriptionRecord]) -> SnapshotRunResult:
        """Replace the ledger rows for ``day`` with the given records"""
        start = time.perf_counter()
        rows = self.build_rows(records, day)

        validation_status = None
        if rows:
            validation = self.validator_factory().validate(snapshot_frame(rows))
            validation_status = validation.status
            if validation.status != ValidationStatus.PASSED:
                logger.warning(
                    "Snapshot batch failed validation",
                    snapshot_date=day.isoformat(),
                    failures=[c.name for c in validation.failures],
                )

        written = 0
        rows_failed = 0
        pages_failed = 0
        for offset in range(0, len(rows), self.page_size):
            page = rows[offset:offset + self.page_size]
            try:
                written += await self.snapshots.upsert_page(page)
                SNAPSHOT_ROWS.labels(outcome="written").inc(len(page))
            except Exception as e:
                pages_failed += 1
                rows_failed += len(page)
                SNAPSHOT_ROWS.labels(outcome="failed").inc(len(page))
                logger.error(
                    "Snapshot page failed",
                    snapshot_date=day.isoformat(),
                    page=offset // self.page_size + 1,
                    rows=len(page),
                    error=str(e),
                )

        stale_removed = 0
        stale_failed = False
        try:
            stale_removed = await self.snapshots.delete_stale(day, [r.subscription_id for r in rows])
        except Exception as e:
            stale_failed = True
            logger.warning("Failed to remove stale snapshot rows", snapshot_date=day.isoformat(), error=str(e))

        result = SnapshotRunResult(
            snapshot_date=day,
            status=SnapshotRunStatus.PARTIAL if pages_failed else SnapshotRunStatus.COMPLETED,
            rows_written=written,
            rows_failed=rows_failed,
            pages_failed=pages_failed,
            stale_rows_removed=stale_removed,
            stale_cleanup_failed=stale_failed,
            validation_status=validation_status,
            duration_seconds=round(time.perf_counter() - start, 3),
        )
        logger.info(
            "Snapshot recorded",
            snapshot_date=day.isoformat(),
            status=result.status.value,
            rows_written=written,
            pages_failed=pages_failed,
            stale_rows_removed=stale_removed,
        )
        return result

    async def backfill(
        self,
        days: Optional[int] = None,
        today: Optional[date] = None,
        overwrite: bool = False,
    ) -> BackfillResult:
        """
        Reconstruct snapshots for the ``days`` days before ``today``.

        Dates that already hold rows are skipped unless ``overwrite``.
        Records are loaded once and replayed oldest day first.
        """
        days = days or get_settings().analytics.backfill_days
        today = today or reference_today()
        start_day = today - timedelta(days=days)
        end_day = today - timedelta(days=1)

        existing = set() if overwrite else await self.snapshots.snapshot_dates(start_day, end_day)
        records = await self.load_records()

        result = BackfillResult()
        for day in date_range(start_day, end_day):
            if day in existing:
                result.days_skipped.append(day)
                continue
            run = await self.write(day, reconstruct(records, day))
            result.runs.append(run)
            result.days_recorded.append(day)

        logger.info(
            "Snapshot backfill finished",
            recorded=len(result.days_recorded),
            skipped=len(result.days_skipped),
            first_day=start_day.isoformat(),
        )
        return result
