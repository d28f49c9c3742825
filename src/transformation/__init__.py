"""
Subscription Transformation Module
"""
from .classification import (
    Classification,
    classify,
    discount_percent,
    is_active_status,
    is_counted,
    is_trial_counted,
    normalize_monthly,
)
from .records import SnapshotRow, SubscriptionRecord
from .transformers import SubscriptionTransformer

__all__ = [
    "Classification",
    "classify",
    "discount_percent",
    "is_active_status",
    "is_counted",
    "is_trial_counted",
    "normalize_monthly",
    "SnapshotRow",
    "SubscriptionRecord",
    "SubscriptionTransformer",
]
