# Routers package
from . import (
    auth_router,
    paystack_router,
    subscription_router,
    commission_router,
    admin_router,
)

__all__ = [
    "auth_router",
    "paystack_router",
    "subscription_router",
    "commission_router",
    "admin_router",
]
