"""
Subscription Records

In-memory shapes shared by ingestion, the snapshot recorder and the
cohort analytics. Built from ORM rows, Stripe payloads or the manual
subscription file.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SubscriptionRecord(BaseModel):
    """Live state of one billing subscription"""

    model_config = ConfigDict(from_attributes=True)

    subscription_id: str
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    status: str = "active"
    amount_cents: int = 0
    billing_interval: str = "month"
    monthly_value: Decimal = Field(default=Decimal("0"))
    discount_percent: float = Field(default=0, allow_inf_nan=False)
    created_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    is_active: bool = False
    is_counted: bool = False
    is_trial_counted: bool = False
    source: str = "stripe"

    @property
    def customer_display(self) -> str:
        return self.customer_name or self.customer_email or "Unknown"


class SnapshotRow(BaseModel):
    """One subscription's classification on one day"""

    model_config = ConfigDict(from_attributes=True)

    snapshot_date: date
    subscription_id: str
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    status: str
    monthly_value: Decimal = Field(default=Decimal("0"))
    discount_percent: float = 0
    is_active: bool = False
    is_counted: bool = False
    is_trial_counted: bool = False

    @property
    def customer_display(self) -> str:
        return self.customer_name or self.customer_email or "Unknown"

    @classmethod
    def from_record(cls, record: SubscriptionRecord, snapshot_date: date) -> "SnapshotRow":
        return cls(
            snapshot_date=snapshot_date,
            subscription_id=record.subscription_id,
            customer_id=record.customer_id,
            customer_email=record.customer_email,
            customer_name=record.customer_name,
            status=record.status,
            monthly_value=record.monthly_value,
            discount_percent=record.discount_percent,
            is_active=record.is_active,
            is_counted=record.is_counted,
            is_trial_counted=record.is_trial_counted,
        )
