"""
Analytics Service for the training dashboard and map.

Read-only projections over the trainings table:
==============================================================================
- Dashboard: overview totals, state/theme breakdowns, monthly trend, status,
  training types, target audience, recent trainings, top states, gender trend
- Map: GeoJSON FeatureCollection plus a per-state summary
- State drill-down: overview, district/theme/monthly/type breakdowns

Each projection runs on its own AsyncSession so the dashboard can gather
them concurrently.
"""
from typing import Optional, List, Dict, Any, Callable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, extract
from datetime import datetime
import asyncio
import logging

from disaster_training.database import async_session_maker
from disaster_training.models.database_models import Training
from disaster_training.services.training_service import TrainingService

logger = logging.getLogger(__name__)

RECENT_TRAININGS_LIMIT = 10
TOP_STATES_LIMIT = 5


def participation_rate(actual: float, planned: float) -> float:
    """actual / planned as a percentage, 0 when nothing was planned."""
    if not planned:
        return 0
    return round(actual / planned * 100, 2)


def gender_ratio(male: float, female: float) -> Dict[str, float]:
    total = (male or 0) + (female or 0)
    if total <= 0:
        return {"male": 0, "female": 0}
    return {
        "male": round(male / total * 100, 2),
        "female": round(female / total * 100, 2),
    }


def _num(value) -> float:
    return float(value) if value is not None else 0


def _int(value) -> int:
    return int(value) if value is not None else 0


def _avg(value) -> float:
    return round(float(value), 2) if value is not None else 0


def _month_key(row) -> Dict[str, int]:
    return {"year": int(row.year), "month": int(row.month)}


class AnalyticsService:
    """Service for dashboard, map and per-state analytics."""

    @staticmethod
    def build_filters(
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        state: Optional[str] = None,
        theme: Optional[str] = None,
        status: Optional[str] = None
    ) -> list:
        return TrainingService.build_filters(
            theme=theme, status=status, state=state,
            start_date=start_date, end_date=end_date
        )

    @staticmethod
    def _filtered(query, conditions: list):
        for condition in conditions:
            query = query.where(condition)
        return query

    @staticmethod
    async def _fetch(session_factory: Callable[[], AsyncSession], query) -> list:
        async with session_factory() as session:
            return (await session.execute(query)).fetchall()

    # ============================================
    # DASHBOARD PROJECTIONS
    # ============================================
    @staticmethod
    async def overview(conditions: list, session_factory=async_session_maker) -> Dict[str, Any]:
        query = AnalyticsService._filtered(
            select(
                func.count(Training.id).label("total_trainings"),
                func.sum(Training.participants_planned).label("planned"),
                func.sum(Training.participants_actual).label("actual"),
                func.sum(Training.participants_male).label("male"),
                func.sum(Training.participants_female).label("female"),
                func.avg(Training.duration_hours).label("avg_duration"),
                func.sum(Training.duration_hours).label("total_hours"),
            ),
            conditions
        )
        row = (await AnalyticsService._fetch(session_factory, query))[0]

        total_trainings = _int(row.total_trainings)
        planned = _int(row.planned)
        actual = _int(row.actual)
        male = _int(row.male)
        female = _int(row.female)

        return {
            "totalTrainings": total_trainings,
            "totalPlannedParticipants": planned,
            "totalActualParticipants": actual,
            "totalMaleParticipants": male,
            "totalFemaleParticipants": female,
            "avgDuration": _avg(row.avg_duration),
            "totalTrainingHours": _num(row.total_hours),
            "participationRate": participation_rate(actual, planned),
            "genderRatio": gender_ratio(male, female),
            "avgParticipantsPerTraining": round(actual / total_trainings) if total_trainings else 0,
        }

    @staticmethod
    async def state_wise(conditions: list, session_factory=async_session_maker) -> List[Dict[str, Any]]:
        count = func.count(Training.id)
        query = AnalyticsService._filtered(
            select(
                Training.state,
                count.label("count"),
                func.sum(Training.participants_planned).label("planned"),
                func.sum(Training.participants_actual).label("actual"),
                func.sum(Training.duration_hours).label("hours"),
            ).group_by(Training.state).order_by(count.desc()),
            conditions
        )
        return [
            {
                "_id": row.state,
                "count": row.count,
                "plannedParticipants": _int(row.planned),
                "actualParticipants": _int(row.actual),
                "totalHours": _num(row.hours),
            }
            for row in await AnalyticsService._fetch(session_factory, query)
        ]

    @staticmethod
    async def theme_wise(conditions: list, session_factory=async_session_maker) -> List[Dict[str, Any]]:
        count = func.count(Training.id)
        query = AnalyticsService._filtered(
            select(
                Training.theme,
                count.label("count"),
                func.sum(Training.participants_planned).label("planned"),
                func.sum(Training.participants_actual).label("actual"),
                func.avg(Training.duration_hours).label("avg_duration"),
            ).group_by(Training.theme).order_by(count.desc()),
            conditions
        )
        return [
            {
                "_id": row.theme,
                "count": row.count,
                "plannedParticipants": _int(row.planned),
                "actualParticipants": _int(row.actual),
                "avgDuration": _avg(row.avg_duration),
            }
            for row in await AnalyticsService._fetch(session_factory, query)
        ]

    @staticmethod
    async def monthly_trend(conditions: list, session_factory=async_session_maker) -> List[Dict[str, Any]]:
        year = extract("year", Training.date)
        month = extract("month", Training.date)
        query = AnalyticsService._filtered(
            select(
                year.label("year"),
                month.label("month"),
                func.count(Training.id).label("count"),
                func.sum(Training.participants_planned).label("planned"),
                func.sum(Training.participants_actual).label("actual"),
            ).group_by(year, month).order_by(year, month),
            conditions
        )
        return [
            {
                "_id": _month_key(row),
                "count": row.count,
                "plannedParticipants": _int(row.planned),
                "actualParticipants": _int(row.actual),
            }
            for row in await AnalyticsService._fetch(session_factory, query)
        ]

    @staticmethod
    async def status_distribution(conditions: list, session_factory=async_session_maker) -> List[Dict[str, Any]]:
        query = AnalyticsService._filtered(
            select(Training.status, func.count(Training.id).label("count")).group_by(Training.status),
            conditions
        )
        return [
            {"_id": row.status, "count": row.count}
            for row in await AnalyticsService._fetch(session_factory, query)
        ]

    @staticmethod
    async def _distribution(column, conditions: list, session_factory) -> List[Dict[str, Any]]:
        count = func.count(Training.id)
        query = AnalyticsService._filtered(
            select(
                column.label("key"),
                count.label("count"),
                func.sum(Training.participants_actual).label("participants"),
            ).group_by(column).order_by(count.desc()),
            conditions
        )
        return [
            {"_id": row.key, "count": row.count, "totalParticipants": _int(row.participants)}
            for row in await AnalyticsService._fetch(session_factory, query)
        ]

    @staticmethod
    async def training_types(conditions: list, session_factory=async_session_maker) -> List[Dict[str, Any]]:
        return await AnalyticsService._distribution(Training.training_type, conditions, session_factory)

    @staticmethod
    async def target_audience(conditions: list, session_factory=async_session_maker) -> List[Dict[str, Any]]:
        return await AnalyticsService._distribution(Training.target_audience, conditions, session_factory)

    @staticmethod
    async def recent_trainings(conditions: list, session_factory=async_session_maker) -> List[Dict[str, Any]]:
        query = AnalyticsService._filtered(
            select(Training).order_by(Training.created_at.desc(), Training.id.desc()).limit(RECENT_TRAININGS_LIMIT),
            conditions
        )
        async with session_factory() as session:
            trainings = (await session.execute(query)).scalars().all()
            recent = []
            for training in trainings:
                data = training.to_dict(include_registrations=False)
                recent.append({
                    key: data[key]
                    for key in ("id", "title", "date", "state", "theme", "status", "participants", "location", "organizer")
                })
            return recent

    @staticmethod
    async def top_states(conditions: list, session_factory=async_session_maker) -> List[Dict[str, Any]]:
        participants = func.coalesce(func.sum(Training.participants_actual), 0)
        query = AnalyticsService._filtered(
            select(
                Training.state,
                func.count(Training.id).label("total_trainings"),
                participants.label("total_participants"),
                func.avg(Training.participants_actual).label("avg_participants"),
            ).group_by(Training.state).order_by(participants.desc()).limit(TOP_STATES_LIMIT),
            conditions
        )
        return [
            {
                "_id": row.state,
                "totalTrainings": row.total_trainings,
                "totalParticipants": _int(row.total_participants),
                "avgParticipants": _avg(row.avg_participants),
            }
            for row in await AnalyticsService._fetch(session_factory, query)
        ]

    @staticmethod
    async def participant_trends(conditions: list, session_factory=async_session_maker) -> List[Dict[str, Any]]:
        year = extract("year", Training.date)
        month = extract("month", Training.date)
        query = AnalyticsService._filtered(
            select(
                year.label("year"),
                month.label("month"),
                func.sum(Training.participants_male).label("male"),
                func.sum(Training.participants_female).label("female"),
            ).group_by(year, month).order_by(year, month),
            conditions
        )
        return [
            {
                "_id": _month_key(row),
                "maleParticipants": _int(row.male),
                "femaleParticipants": _int(row.female),
            }
            for row in await AnalyticsService._fetch(session_factory, query)
        ]

    @staticmethod
    async def dashboard(conditions: list, session_factory=async_session_maker) -> Dict[str, Any]:
        """Run every dashboard projection concurrently and merge the results."""
        (
            overview,
            state_wise,
            theme_wise,
            monthly_trend,
            status_distribution,
            training_types,
            target_audience,
            recent_trainings,
            top_states,
            participant_trends,
        ) = await asyncio.gather(
            AnalyticsService.overview(conditions, session_factory),
            AnalyticsService.state_wise(conditions, session_factory),
            AnalyticsService.theme_wise(conditions, session_factory),
            AnalyticsService.monthly_trend(conditions, session_factory),
            AnalyticsService.status_distribution(conditions, session_factory),
            AnalyticsService.training_types(conditions, session_factory),
            AnalyticsService.target_audience(conditions, session_factory),
            AnalyticsService.recent_trainings(conditions, session_factory),
            AnalyticsService.top_states(conditions, session_factory),
            AnalyticsService.participant_trends(conditions, session_factory),
        )
        logger.debug(f"Dashboard computed over {overview['totalTrainings']} trainings")

        return {
            "overview": overview,
            "stateWise": state_wise,
            "themeWise": theme_wise,
            "monthlyTrend": monthly_trend,
            "statusDistribution": status_distribution,
            "trainingTypes": training_types,
            "targetAudience": target_audience,
            "recentTrainings": recent_trainings,
            "topStates": top_states,
            "participantTrends": participant_trends,
        }

    # ============================================
    # MAP
    # ============================================
    @staticmethod
    async def map_data(conditions: list, session_factory=async_session_maker) -> Dict[str, Any]:
        async def features() -> List[Dict[str, Any]]:
            async with session_factory() as session:
                result = await session.execute(AnalyticsService._filtered(select(Training), conditions))
                collected = []
                for training in result.scalars().all():
                    data = training.to_dict(include_registrations=False)
                    collected.append({
                        "type": "Feature",
                        "geometry": {"type": "Point", "coordinates": [training.longitude, training.latitude]},
                        "properties": {
                            key: data[key]
                            for key in (
                                "id", "title", "date", "state", "district", "theme", "status",
                                "participants", "trainer", "trainingType", "targetAudience", "organizer",
                            )
                        },
                    })
                return collected

        async def state_summary() -> List[Dict[str, Any]]:
            query = AnalyticsService._filtered(
                select(
                    Training.state,
                    func.count(Training.id).label("total_trainings"),
                    func.sum(Training.participants_actual).label("total_participants"),
                    func.avg(Training.participants_actual).label("avg_participants"),
                ).group_by(Training.state),
                conditions
            )
            return [
                {
                    "_id": row.state,
                    "totalTrainings": row.total_trainings,
                    "totalParticipants": _int(row.total_participants),
                    "avgParticipants": _avg(row.avg_participants),
                }
                for row in await AnalyticsService._fetch(session_factory, query)
            ]

        feature_list, summary = await asyncio.gather(features(), state_summary())
        return {
            "geoJson": {"type": "FeatureCollection", "features": feature_list},
            "stateSummary": summary,
            "totalFeatures": len(feature_list),
        }

    # ============================================
    # STATE DRILL-DOWN
    # ============================================
    @staticmethod
    async def state_analytics(
        state: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        session_factory=async_session_maker
    ) -> Dict[str, Any]:
        conditions = AnalyticsService.build_filters(start_date=start_date, end_date=end_date, state=state)

        async def state_overview() -> Dict[str, Any]:
            query = AnalyticsService._filtered(
                select(
                    func.count(Training.id).label("total_trainings"),
                    func.sum(Training.participants_actual).label("total_participants"),
                    func.avg(Training.participants_actual).label("avg_participants"),
                    func.sum(Training.duration_hours).label("total_hours"),
                ),
                conditions
            )
            row = (await AnalyticsService._fetch(session_factory, query))[0]
            return {
                "totalTrainings": _int(row.total_trainings),
                "totalParticipants": _int(row.total_participants),
                "avgParticipants": _avg(row.avg_participants),
                "totalHours": _num(row.total_hours),
            }

        async def breakdown(column) -> List[Dict[str, Any]]:
            count = func.count(Training.id)
            query = AnalyticsService._filtered(
                select(
                    column.label("key"),
                    count.label("count"),
                    func.sum(Training.participants_actual).label("participants"),
                ).group_by(column).order_by(count.desc()),
                conditions
            )
            return [
                {"_id": row.key, "count": row.count, "participants": _int(row.participants)}
                for row in await AnalyticsService._fetch(session_factory, query)
            ]

        async def monthly() -> List[Dict[str, Any]]:
            year = extract("year", Training.date)
            month = extract("month", Training.date)
            query = AnalyticsService._filtered(
                select(
                    year.label("year"),
                    month.label("month"),
                    func.count(Training.id).label("count"),
                    func.sum(Training.participants_actual).label("participants"),
                ).group_by(year, month).order_by(year, month),
                conditions
            )
            return [
                {"_id": _month_key(row), "count": row.count, "participants": _int(row.participants)}
                for row in await AnalyticsService._fetch(session_factory, query)
            ]

        overview, district_wise, theme_wise, monthly_trend, training_types = await asyncio.gather(
            state_overview(),
            breakdown(Training.district),
            breakdown(Training.theme),
            monthly(),
            breakdown(Training.training_type),
        )
        return {
            "state": state,
            "overview": overview,
            "districtWise": district_wise,
            "themeWise": theme_wise,
            "monthlyTrend": monthly_trend,
            "trainingTypes": training_types,
        }
