"""
API Routes Module
"""
from .analytics import router as analytics_router
from .health import router as health_router
from .webhooks import router as webhooks_router

__all__ = [
    "analytics_router",
    "health_router",
    "webhooks_router",
]
