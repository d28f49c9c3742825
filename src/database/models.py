"""
Database Models - Subscription Ledger

This module defines the persisted state of the analytics engine:

Live State:
- Subscription: one row per billing subscription, mutated on every billing event

Fact Tables:
- SubscriptionSnapshot: immutable daily classification of each subscription
- HistoricalMRR: daily revenue aggregate used for trend charts
"""

from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# =============================================================================
# ENUMERATIONS
# =============================================================================

class SubscriptionStatus(str, Enum):
    """Billing subscription status"""
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    UNPAID = "unpaid"


class SubscriptionSource(str, Enum):
    """Where a subscription record originates"""
    STRIPE = "stripe"
    MANUAL = "manual"


# =============================================================================
# LIVE STATE
# =============================================================================

class Subscription(Base):
    """
    Subscription Table

    Canonical copy of every subscription known to the billing source.
    Rows are never deleted; cancellation is a status transition.
    """
    __tablename__ = "subscriptions"

    subscription_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    customer_id: Mapped[Optional[str]] = mapped_column(String(255))
    customer_email: Mapped[Optional[str]] = mapped_column(String(320))
    customer_name: Mapped[Optional[str]] = mapped_column(String(255))

    status: Mapped[str] = mapped_column(String(32), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, default=0)
    billing_interval: Mapped[str] = mapped_column(String(16), default="month")
    monthly_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    discount_percent: Mapped[float] = mapped_column(Float, default=0)

    created_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    canceled_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    trial_end: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Classification flags as of the last sync
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)
    is_counted: Mapped[bool] = mapped_column(Boolean, default=False)
    is_trial_counted: Mapped[bool] = mapped_column(Boolean, default=False)

    source: Mapped[str] = mapped_column(String(16), default=SubscriptionSource.STRIPE.value)

    # Audit
    synced_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_subscriptions_status", "status"),
        Index("ix_subscriptions_customer", "customer_id"),
        Index("ix_subscriptions_counted", "is_counted", "is_active"),
    )


# =============================================================================
# FACT TABLES
# =============================================================================

class SubscriptionSnapshot(Base):
    """
    Daily Subscription Snapshot Fact Table

    Ground truth for "state as of date X". Customer fields are copied so a
    later correction of the live record never rewrites history.
    """
    __tablename__ = "subscription_snapshots"

    snapshot_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    subscription_id: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_id: Mapped[Optional[str]] = mapped_column(String(255))
    customer_email: Mapped[Optional[str]] = mapped_column(String(320))
    customer_name: Mapped[Optional[str]] = mapped_column(String(255))

    status: Mapped[str] = mapped_column(String(32), nullable=False)
    monthly_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0)
    discount_percent: Mapped[float] = mapped_column(Float, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_counted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_trial_counted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("snapshot_date", "subscription_id", name="uq_snapshot_date_subscription"),
        Index("ix_snapshots_date_counted", "snapshot_date", "is_counted"),
        Index("ix_snapshots_date_trial", "snapshot_date", "is_trial_counted"),
        Index("ix_snapshots_subscription", "subscription_id"),
    )


class HistoricalMRR(Base):
    """
    Daily MRR Aggregate

    One row per reporting day, recomputed and upserted by the daily sync.
    """
    __tablename__ = "historical_mrr"

    mrr_date: Mapped[date] = mapped_column(Date, primary_key=True)
    official_mrr: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    arr: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    paying_customers_count: Mapped[int] = mapped_column(Integer, nullable=False)
    average_customer_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    trial_pipeline_mrr: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    active_trials_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_opportunity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    computed_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )
