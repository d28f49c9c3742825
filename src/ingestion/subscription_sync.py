"""
Subscription Sync

Pulls every subscription from the billing source, normalizes it and
upserts the live subscription table. Runs once a day ahead of the
snapshot recorder and on demand from the webhook processor.
"""

import time
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

import structlog
from prometheus_client import Counter
from pydantic import BaseModel, Field

from src.config import get_settings
from src.database.repositories import SubscriptionRepository
from src.ingestion.billing_client import BillingClient
from src.transformation.classification import field_value
from src.transformation.records import SubscriptionRecord
from src.transformation.transformers import SubscriptionTransformer, utcnow

logger = structlog.get_logger(__name__)


SUBSCRIPTIONS_SYNCED = Counter(
    "subscription_sync_records_total",
    "Subscriptions processed by the sync",
    ["status"],
)


class SyncStatus(str, Enum):
    """Sync run status"""
    COMPLETED = "completed"
    PARTIAL = "partial"


class SyncResult(BaseModel):
    """Result of a subscription sync run"""
    status: SyncStatus
    processed: int = 0
    errors: int = 0
    error_ids: List[str] = Field(default_factory=list)
    duration_seconds: float = 0
    started_at: datetime
    completed_at: Optional[datetime] = None


class SubscriptionSync:
    """
    Synchronizes the billing source into the subscription table.

    Example:
        sync = SubscriptionSync(StripeBillingClient(), SubscriptionRepository(factory))
        result = await sync.run()
    """

    def __init__(
        self,
        client: BillingClient,
        repository: SubscriptionRepository,
        transformer: Optional[SubscriptionTransformer] = None,
    ):
        self.client = client
        self.repository = repository
        self.transformer = transformer or SubscriptionTransformer(
            get_settings().analytics.excluded_email_domains
        )

    async def sync_one(
        self,
        subscription: Any,
        customer: Optional[Any] = None,
        status_override: Optional[str] = None,
        canceled_at_override: Optional[datetime] = None,
    ) -> SubscriptionRecord:
        """Normalize and upsert a single subscription"""
        customer_ref = customer if customer is not None else field_value(subscription, "customer")
        if isinstance(customer_ref, str):
            customer = await self.client.retrieve_customer(customer_ref)

        record = self.transformer.from_stripe(
            subscription,
            customer=customer,
            status_override=status_override,
            canceled_at_override=canceled_at_override,
        )
        await self.repository.upsert(record)
        logger.debug(
            "Subscription synced",
            subscription_id=record.subscription_id,
            status=record.status,
            is_counted=record.is_counted,
            is_trial_counted=record.is_trial_counted,
        )
        return record

    async def run(self) -> SyncResult:
        """
        Sync every subscription.

        Listing failures propagate as UpstreamUnavailableError; failures for
        individual subscriptions are logged and counted.
        """
        started_at = utcnow()
        start = time.perf_counter()

        subscriptions = await self.client.list_subscriptions(status="all")
        logger.info("Starting subscription sync", subscriptions=len(subscriptions))

        processed = 0
        error_ids: List[str] = []
        for subscription in subscriptions:
            try:
                await self.sync_one(subscription)
                processed += 1
                SUBSCRIPTIONS_SYNCED.labels(status="success").inc()
            except Exception as e:
                subscription_id = field_value(subscription, "id")
                error_ids.append(str(subscription_id))
                SUBSCRIPTIONS_SYNCED.labels(status="error").inc()
                logger.error("Failed to sync subscription", subscription_id=subscription_id, error=str(e))

        result = SyncResult(
            status=SyncStatus.PARTIAL if error_ids else SyncStatus.COMPLETED,
            processed=processed,
            errors=len(error_ids),
            error_ids=error_ids,
            duration_seconds=round(time.perf_counter() - start, 3),
            started_at=started_at,
            completed_at=utcnow(),
        )
        logger.info(
            "Subscription sync finished",
            status=result.status.value,
            processed=result.processed,
            errors=result.errors,
            duration_seconds=result.duration_seconds,
        )
        return result
