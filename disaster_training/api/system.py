"""
System Health API endpoints.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from disaster_training.database import get_db
from disaster_training.dependencies import get_hub
from disaster_training.hubs.notification_hub import NotificationHub
from disaster_training.services.system_service import SystemService
from disaster_training.schemas.schemas import envelope

logger = logging.getLogger(__name__)
router = APIRouter(tags=["System"])


@router.get(
    "/health",
    summary="Health Check",
    description="""
    Database and Redis reachability, host metrics and live socket counts.

    Returns 503 when the database is unreachable.
    """
)
async def health_check(
    db: AsyncSession = Depends(get_db),
    hub: NotificationHub = Depends(get_hub)
):
    result = await SystemService.get_health(db, realtime=hub.stats())
    if result["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=envelope(result, success=False))
    return envelope(result, message="Server is running")
