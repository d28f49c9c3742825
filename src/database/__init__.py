"""
Database Module
"""
from .connection import (
    SessionFactory,
    close_database,
    get_db,
    get_session_factory,
    init_database,
    session_scope,
)
from .models import Base, HistoricalMRR, Subscription, SubscriptionSnapshot
from .repositories import MRRHistoryRepository, SnapshotRepository, SubscriptionRepository

__all__ = [
    "SessionFactory",
    "close_database",
    "get_db",
    "get_session_factory",
    "init_database",
    "session_scope",
    "Base",
    "HistoricalMRR",
    "Subscription",
    "SubscriptionSnapshot",
    "MRRHistoryRepository",
    "SnapshotRepository",
    "SubscriptionRepository",
]
