"""
Billing Webhook Processor

Keeps the subscription table current between daily syncs by reacting to
billing events. Every handled event ends in a resync of the affected
subscriptions from the billing source, so the stored state is whatever
the provider reports now rather than the event payload.
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from prometheus_client import Counter
from pydantic import BaseModel, Field

from src.ingestion.billing_client import BillingClient
from src.ingestion.subscription_sync import SubscriptionSync
from src.transformation.classification import field_value
from src.transformation.transformers import utcnow

logger = structlog.get_logger(__name__)


WEBHOOK_EVENTS = Counter(
    "billing_webhook_events_total",
    "Billing webhook events received",
    ["event_type", "outcome"],
)


class WebhookEventType(str, Enum):
    """Billing events that trigger a resync"""
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    CUSTOMER_UPDATED = "customer.updated"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class WebhookOutcome(BaseModel):
    """What processing one event did"""
    event_id: Optional[str] = None
    event_type: str
    handled: bool
    subscription_ids: List[str] = Field(default_factory=list)


class WebhookProcessor:
    """
    Dispatches billing events to resync handlers.

    Example:
        processor = WebhookProcessor(client, sync)
        outcome = await processor.process(event)
    """

    def __init__(self, client: BillingClient, sync: SubscriptionSync):
        self.client = client
        self.sync = sync
        self._handlers: Dict[str, Callable[[Any], Awaitable[List[str]]]] = {
            WebhookEventType.SUBSCRIPTION_CREATED.value: self._handle_subscription_change,
            WebhookEventType.SUBSCRIPTION_UPDATED.value: self._handle_subscription_change,
            WebhookEventType.SUBSCRIPTION_DELETED.value: self._handle_subscription_deleted,
            WebhookEventType.CUSTOMER_UPDATED.value: self._handle_customer_updated,
            WebhookEventType.INVOICE_PAYMENT_SUCCEEDED.value: self._handle_invoice,
            WebhookEventType.INVOICE_PAYMENT_FAILED.value: self._handle_invoice,
        }

    def get_event_types(self) -> List[str]:
        return list(self._handlers)

    async def process(self, event: Any) -> WebhookOutcome:
        """
        Process one billing event.

        Unknown event types are acknowledged and reported as unhandled.
        Billing-source failures propagate so the provider redelivers.
        """
        event_type = field_value(event, "type") or "unknown"
        event_id = field_value(event, "id")
        data_object = field_value(field_value(event, "data"), "object")

        handler = self._handlers.get(event_type)
        if handler is None:
            WEBHOOK_EVENTS.labels(event_type=event_type, outcome="ignored").inc()
            logger.info("Ignoring webhook event", event_type=event_type, event_id=event_id)
            return WebhookOutcome(event_id=event_id, event_type=event_type, handled=False)

        try:
            subscription_ids = await handler(data_object)
        except Exception as e:
            WEBHOOK_EVENTS.labels(event_type=event_type, outcome="error").inc()
            logger.error("Webhook processing failed", event_type=event_type, event_id=event_id, error=str(e))
            raise

        WEBHOOK_EVENTS.labels(event_type=event_type, outcome="processed").inc()
        logger.info(
            "Webhook event processed",
            event_type=event_type,
            event_id=event_id,
            subscriptions=len(subscription_ids),
        )
        return WebhookOutcome(
            event_id=event_id,
            event_type=event_type,
            handled=True,
            subscription_ids=subscription_ids,
        )

    async def _handle_subscription_change(self, subscription: Any) -> List[str]:
        fresh = await self.client.retrieve_subscription(field_value(subscription, "id"))
        record = await self.sync.sync_one(fresh)
        return [record.subscription_id]

    async def _handle_subscription_deleted(self, subscription: Any) -> List[str]:
        record = await self.sync.sync_one(
            subscription,
            status_override="canceled",
            canceled_at_override=utcnow(),
        )
        return [record.subscription_id]

    async def _handle_customer_updated(self, customer: Any) -> List[str]:
        subscriptions = await self.client.list_customer_subscriptions(field_value(customer, "id"))
        synced = []
        for subscription in subscriptions:
            record = await self.sync.sync_one(subscription, customer=customer)
            synced.append(record.subscription_id)
        return synced

    async def _handle_invoice(self, invoice: Any) -> List[str]:
        subscription_id = field_value(invoice, "subscription")
        if not subscription_id:
            return []
        if not isinstance(subscription_id, str):
            subscription_id = field_value(subscription_id, "id")

        fresh = await self.client.retrieve_subscription(subscription_id)
        record = await self.sync.sync_one(fresh)
        return [record.subscription_id]
