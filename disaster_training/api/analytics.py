"""
Analytics API endpoints.

Read-only dashboard, map and state drill-down projections over trainings.

Metrics:
- participationRate = actual / planned * 100 (0 when nothing planned)
- genderRatio = male/female share of (male + female) * 100

Endpoints:
- GET /analytics/dashboard: All dashboard projections in one response
- GET /analytics/map-data: GeoJSON FeatureCollection and state summary
- GET /analytics/states/{state}: One state's breakdowns
"""
from fastapi import APIRouter, Depends, Query
from typing import Optional
from datetime import datetime
import logging

from disaster_training.exceptions import NotFound
from disaster_training.models.database_models import to_naive_utc
from disaster_training.models.roles import INDIAN_STATES, TrainingStatus
from disaster_training.services.analytics_service import AnalyticsService
from disaster_training.schemas.schemas import envelope

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/analytics", tags=["Analytics"])


@router.get(
    "/dashboard",
    summary="Dashboard Analytics",
    description="""
    Overview totals, state-wise, theme-wise, monthly trend, status
    distribution, training types, target audience, recent trainings,
    top states and gender trends.

    Filters: startDate, endDate, state, theme.
    """
)
async def dashboard(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    state: Optional[str] = Query(None),
    theme: Optional[str] = Query(None)
):
    conditions = AnalyticsService.build_filters(
        start_date=to_naive_utc(start_date),
        end_date=to_naive_utc(end_date),
        state=state,
        theme=theme,
    )
    return envelope(await AnalyticsService.dashboard(conditions))


@router.get(
    "/map-data",
    summary="Map Data",
    description="GeoJSON points for every matching training plus per-state totals."
)
async def map_data(
    status: Optional[TrainingStatus] = Query(None),
    theme: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate")
):
    conditions = AnalyticsService.build_filters(
        start_date=to_naive_utc(start_date),
        end_date=to_naive_utc(end_date),
        state=state,
        theme=theme,
        status=status.value if status else None,
    )
    return envelope(await AnalyticsService.map_data(conditions))


@router.get("/states/{state}", summary="State Analytics")
async def state_analytics(
    state: str,
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate")
):
    if state not in INDIAN_STATES:
        raise NotFound(f"Unknown state '{state}'")
    result = await AnalyticsService.state_analytics(
        state,
        start_date=to_naive_utc(start_date),
        end_date=to_naive_utc(end_date),
    )
    return envelope(result)
