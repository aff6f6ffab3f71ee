"""
API v1 package initialization.

This module collects the v1 routers of the DeliveryHub API.
"""

from deliveryhub.api.v1.orders import router as orders_router
from deliveryhub.api.v1.realtime import router as realtime_router
from deliveryhub.api.v1.users import router as users_router

__all__ = ["orders_router", "realtime_router", "users_router"]
