"""
API routes and endpoints.
"""

from fastapi import APIRouter
from .v1 import daily_meals, orders, subscriptions

api_router = APIRouter()

api_router.include_router(orders.router, tags=["orders"])
api_router.include_router(subscriptions.router, tags=["subscriptions"])
api_router.include_router(orders.admin_router, prefix="/admin", tags=["admin"])
api_router.include_router(daily_meals.router, prefix="/admin", tags=["admin"])
api_router.include_router(subscriptions.admin_router, prefix="/admin", tags=["admin"])
