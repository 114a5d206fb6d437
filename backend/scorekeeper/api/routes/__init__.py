from .account import router as account_router
from .notifications import router as notifications_router
from .system import router as system_router

__all__ = ["account_router", "notifications_router", "system_router"]
