"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from terminal_backend.app.api.v1.endpoints import tariffs

router = APIRouter()

# Billing - tariff pricing and lifecycle
router.include_router(tariffs.router)
