"""
API Routes

Modular route definitions for the Leadify API.
"""
from leadify.api.routes.analytics import router as analytics_router
from leadify.api.routes.chat import router as chat_router
from leadify.api.routes.health import router as health_router
from leadify.api.routes.metrics import router as metrics_router

__all__ = [
    "analytics_router",
    "chat_router",
    "health_router",
    "metrics_router",
]
