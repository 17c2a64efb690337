"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from ecotrack.app.api.v1.endpoints import auth, reports, collectors, notifications

router = APIRouter()

# Authentication
router.include_router(auth.router)

# Citizen reports and admin report actions
router.include_router(reports.router)

# Collector routes, statistics and pickups
router.include_router(collectors.router)

# In-app notifications
router.include_router(notifications.router)
