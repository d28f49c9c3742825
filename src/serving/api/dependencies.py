"""
FastAPI dependencies wiring the analytics components to the global
database and billing client. Tests replace these through
``app.dependency_overrides``.
"""

from typing import Optional

import structlog
from fastapi import Depends

from src.analytics.conversion import ConversionVerifier
from src.analytics.exceptions import UpstreamUnavailableError
from src.analytics.mrr import MRRHistoryRecorder
from src.analytics.retention import CohortComparator
from src.database.connection import SessionFactory, get_session_factory
from src.database.repositories import MRRHistoryRepository, SnapshotRepository, SubscriptionRepository
from src.ingestion.billing_client import BillingClient, StripeBillingClient
from src.ingestion.subscription_sync import SubscriptionSync
from src.ingestion.webhook_processor import WebhookProcessor

logger = structlog.get_logger(__name__)


def get_store() -> SessionFactory:
    try:
        return get_session_factory()
    except RuntimeError as e:
        raise UpstreamUnavailableError("store", str(e)) from e


def get_billing_client() -> Optional[BillingClient]:
    """Stripe client, or None when no API key is configured"""
    try:
        return StripeBillingClient()
    except UpstreamUnavailableError as e:
        logger.warning("Billing client unavailable", error=str(e))
        return None


def get_cohort_comparator(store: SessionFactory = Depends(get_store)) -> CohortComparator:
    return CohortComparator(SnapshotRepository(store))


def get_conversion_verifier(
    store: SessionFactory = Depends(get_store),
    client: Optional[BillingClient] = Depends(get_billing_client),
) -> ConversionVerifier:
    return ConversionVerifier(SnapshotRepository(store), client)


def get_mrr_recorder(store: SessionFactory = Depends(get_store)) -> MRRHistoryRecorder:
    return MRRHistoryRecorder(SubscriptionRepository(store), MRRHistoryRepository(store))


def get_webhook_processor(
    store: SessionFactory = Depends(get_store),
    client: Optional[BillingClient] = Depends(get_billing_client),
) -> WebhookProcessor:
    if client is None:
        raise UpstreamUnavailableError("stripe", "STRIPE_SECRET_KEY is not configured")
    return WebhookProcessor(client, SubscriptionSync(client, SubscriptionRepository(store)))
