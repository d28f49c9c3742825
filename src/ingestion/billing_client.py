"""
Billing Source Client

Read-only access to the billing provider. The Stripe SDK is synchronous,
so every call is pushed onto the default executor with
``asyncio.to_thread`` and SDK failures surface as
``UpstreamUnavailableError``.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional

import stripe
import structlog

from src.analytics.exceptions import UpstreamUnavailableError
from src.config import get_settings

logger = structlog.get_logger(__name__)

SUBSCRIPTION_EXPAND = ["data.customer", "data.items.data.price"]


class BillingClient(ABC):
    """Abstract billing source"""

    @abstractmethod
    async def list_subscriptions(self, status: str = "all") -> List[Any]:
        """All subscriptions with customer and price expanded"""
        pass

    @abstractmethod
    async def retrieve_subscription(self, subscription_id: str) -> Any:
        pass

    @abstractmethod
    async def retrieve_customer(self, customer_id: str) -> Any:
        pass

    @abstractmethod
    async def list_customer_subscriptions(self, customer_id: str) -> List[Any]:
        pass

    @abstractmethod
    async def list_invoices(self, customer_id: str, limit: int = 100) -> List[Any]:
        pass

    @abstractmethod
    async def retrieve_charge(self, charge_id: str) -> Any:
        pass

    @abstractmethod
    async def retrieve_payment_intent(self, payment_intent_id: str) -> Any:
        pass

    @abstractmethod
    async def list_refunds(self, payment_intent_id: str, limit: int = 100) -> List[Any]:
        pass


class StripeBillingClient(BillingClient):
    """
    Stripe-backed billing client.

    Example:
        client = StripeBillingClient()
        subscriptions = await client.list_subscriptions()
    """

    def __init__(self, api_key: Optional[str] = None, page_size: Optional[int] = None):
        settings = get_settings().stripe
        if api_key is None and settings.secret_key is not None:
            api_key = settings.secret_key.get_secret_value()
        if not api_key:
            raise UpstreamUnavailableError("stripe", "STRIPE_SECRET_KEY is not configured")

        self.api_key = api_key
        self.page_size = page_size or settings.page_size
        stripe.max_network_retries = settings.max_network_retries

    async def _call(self, operation: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, api_key=self.api_key, **kwargs)
        except stripe.StripeError as e:
            logger.error("Stripe call failed", operation=operation, error=str(e))
            raise UpstreamUnavailableError("stripe", f"{operation}: {e}") from e

    async def _list_all(self, operation: str, fn: Callable[..., Any], **kwargs: Any) -> List[Any]:
        def collect(**call_kwargs: Any) -> List[Any]:
            return list(fn(**call_kwargs).auto_paging_iter())

        return await self._call(operation, collect, **kwargs)

    async def list_subscriptions(self, status: str = "all") -> List[Any]:
        subscriptions = await self._list_all(
            "subscriptions.list",
            stripe.Subscription.list,
            status=status,
            limit=self.page_size,
            expand=SUBSCRIPTION_EXPAND,
        )
        logger.info("Fetched subscriptions from Stripe", count=len(subscriptions), status=status)
        return subscriptions

    async def retrieve_subscription(self, subscription_id: str) -> Any:
        return await self._call(
            "subscriptions.retrieve",
            stripe.Subscription.retrieve,
            subscription_id,
            expand=["customer", "items.data.price"],
        )

    async def retrieve_customer(self, customer_id: str) -> Any:
        return await self._call("customers.retrieve", stripe.Customer.retrieve, customer_id)

    async def list_customer_subscriptions(self, customer_id: str) -> List[Any]:
        return await self._list_all(
            "subscriptions.list",
            stripe.Subscription.list,
            customer=customer_id,
            status="all",
            limit=self.page_size,
            expand=SUBSCRIPTION_EXPAND,
        )

    async def list_invoices(self, customer_id: str, limit: int = 100) -> List[Any]:
        page = await self._call("invoices.list", stripe.Invoice.list, customer=customer_id, limit=limit)
        return list(page.data)

    async def retrieve_charge(self, charge_id: str) -> Any:
        return await self._call("charges.retrieve", stripe.Charge.retrieve, charge_id)

    async def retrieve_payment_intent(self, payment_intent_id: str) -> Any:
        return await self._call("payment_intents.retrieve", stripe.PaymentIntent.retrieve, payment_intent_id)

    async def list_refunds(self, payment_intent_id: str, limit: int = 100) -> List[Any]:
        page = await self._call("refunds.list", stripe.Refund.list, payment_intent=payment_intent_id, limit=limit)
        return list(page.data)
