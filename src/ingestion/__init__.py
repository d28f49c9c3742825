"""
Billing Ingestion Module
"""
from .billing_client import BillingClient, StripeBillingClient
from .manual_subscriptions import ManualSubscriptionSource
from .subscription_sync import SubscriptionSync, SyncResult, SyncStatus
from .webhook_processor import WebhookOutcome, WebhookProcessor

__all__ = [
    "BillingClient",
    "StripeBillingClient",
    "ManualSubscriptionSource",
    "SubscriptionSync",
    "SyncResult",
    "SyncStatus",
    "WebhookOutcome",
    "WebhookProcessor",
]
