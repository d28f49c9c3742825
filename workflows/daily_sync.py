"""
Prefect Workflow Orchestration - Daily Subscription Sync

Runs once per reference day:
- Pull every subscription from Stripe into the subscriptions table
- Record the day's official MRR in the history table
- Record the daily snapshot ledger used by retention and conversion
"""

from datetime import date
from typing import Optional

from prefect import flow, get_run_logger, task

from src.analytics.mrr import MRRHistoryRecorder
from src.analytics.periods import reference_today
from src.analytics.snapshots import SnapshotRecorder
from src.config.logging import configure_logging
from src.database.connection import close_database, get_session_factory, init_database
from src.database.repositories import MRRHistoryRepository, SnapshotRepository, SubscriptionRepository
from src.ingestion.billing_client import StripeBillingClient
from src.ingestion.subscription_sync import SubscriptionSync


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="sync_subscriptions",
    description="Upsert all Stripe subscriptions into the store",
    retries=3,
    retry_delay_seconds=60,
)
async def sync_subscriptions() -> dict:
    logger = get_run_logger()

    sync = SubscriptionSync(StripeBillingClient(), SubscriptionRepository(get_session_factory()))
    result = await sync.run()

    logger.info(f"Subscription sync {result.status.value}: {result.processed} processed, {result.errors} failed")
    return result.model_dump(mode="json")


@task(
    name="record_mrr_history",
    description="Store the official MRR for the day",
    retries=2,
    retry_delay_seconds=30,
)
async def record_mrr_history(day: date) -> dict:
    logger = get_run_logger()
    factory = get_session_factory()

    recorder = MRRHistoryRecorder(SubscriptionRepository(factory), MRRHistoryRepository(factory))
    point = await recorder.record(day)

    logger.info(f"MRR for {day.isoformat()}: {point.official_mrr} across {point.paying_customers_count} subscriptions")
    return point.model_dump(mode="json")


@task(
    name="record_snapshot",
    description="Write the daily subscription snapshot",
    retries=2,
    retry_delay_seconds=60,
)
async def record_snapshot(day: date) -> dict:
    logger = get_run_logger()
    factory = get_session_factory()

    recorder = SnapshotRecorder(SubscriptionRepository(factory), SnapshotRepository(factory))
    result = await recorder.record(day)

    if result.pages_failed:
        logger.warning(f"Snapshot for {day.isoformat()} is partial: {result.rows_failed} rows failed")
    logger.info(f"Snapshot for {day.isoformat()}: {result.rows_written} rows written")
    return result.model_dump(mode="json")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="daily_subscription_sync",
    description="Daily Stripe sync, MRR history and snapshot ledger",
    retries=1,
    retry_delay_seconds=300,
)
async def daily_subscription_sync(
    process_date: Optional[date] = None,
    database_url: Optional[str] = None,
) -> dict:
    """
    Steps:
    1. Sync subscriptions from Stripe
    2. Record MRR history
    3. Record the snapshot

    The snapshot still runs when the sync fails, so the ledger keeps one
    row set per day built from the last known state.
    """
    logger = get_run_logger()
    configure_logging()

    process_date = process_date or reference_today()
    logger.info(f"Starting daily subscription sync for {process_date.isoformat()}")

    results = {"process_date": process_date.isoformat(), "steps": {}}

    await init_database(database_url)
    try:
        try:
            results["steps"]["sync"] = await sync_subscriptions()
        except Exception as e:
            logger.error(f"Subscription sync failed, snapshotting last known state: {e}")
            results["steps"]["sync"] = {"status": "failed", "error": str(e)}

        results["steps"]["mrr_history"] = await record_mrr_history(process_date)
        results["steps"]["snapshot"] = await record_snapshot(process_date)
    finally:
        await close_database()

    sync_failed = results["steps"]["sync"].get("status") == "failed"
    results["status"] = "partial" if sync_failed else "success"
    return results


@flow(
    name="backfill_snapshots",
    description="Reconstruct missing snapshot days from current subscription state",
)
async def backfill_snapshots(
    days: Optional[int] = None,
    overwrite: bool = False,
    database_url: Optional[str] = None,
) -> dict:
    logger = get_run_logger()
    configure_logging()

    await init_database(database_url)
    try:
        factory = get_session_factory()
        recorder = SnapshotRecorder(SubscriptionRepository(factory), SnapshotRepository(factory))
        result = await recorder.backfill(days=days, overwrite=overwrite)
    finally:
        await close_database()

    logger.info(f"Backfill recorded {len(result.days_recorded)} days, skipped {len(result.days_skipped)}")
    return result.model_dump(mode="json")


if __name__ == "__main__":
    import asyncio

    asyncio.run(daily_subscription_sync())
