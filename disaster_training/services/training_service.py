"""
Training Service for the training aggregate.

Covers the training lifecycle, registration with capacity and deadline
rules, attendance, approval and feedback, plus the public statistics and
nearby search.

Registration capacity:
==============================================================================
The registration counter is claimed with a single conditional UPDATE
(count < max), so two concurrent registrations cannot both take the last
seat. The (training_id, user_id) unique constraint backs the
one-registration-per-user rule.

Services commit their own writes; callers publish hub events afterwards.
"""
from typing import Optional, List, Dict, Any, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_, or_, update, delete, extract
from sqlalchemy.exc import IntegrityError
from datetime import datetime, timedelta
import logging
import math

from disaster_training.models.database_models import (
    Training, TrainingRegistration, TrainingFeedback, User, utcnow,
)
from disaster_training.models.roles import (
    ApprovalStatus, RegistrationStatus, Role, TrainingStatus,
)
from disaster_training.dependencies import TrainingScope, ensure_state_access
from disaster_training.exceptions import (
    CapacityExceeded, Conflict, DeadlinePassed, Forbidden, NotFound, NotRegistered,
)
from disaster_training.schemas.schemas import (
    AttendanceRequest, FeedbackRequest, TrainingWriteRequest,
)

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371000.0
DEFAULT_NEARBY_DISTANCE_M = 100000

_MANAGER_ROLES = (Role.ADMIN.value, Role.SUPER_ADMIN.value)


def haversine_m(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
    """Great-circle distance in metres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


class TrainingService:
    """Service for trainings and their registrations."""

    @staticmethod
    def build_filters(
        theme: Optional[str] = None,
        institution: Optional[str] = None,
        status: Optional[str] = None,
        state: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> list:
        conditions = []
        if theme:
            conditions.append(Training.theme == theme)
        if institution:
            conditions.append(Training.institution == institution)
        if status:
            conditions.append(Training.status == status)
        if state:
            conditions.append(Training.state == state)
        if start_date:
            conditions.append(Training.date >= start_date)
        if end_date:
            conditions.append(Training.date <= end_date)
        return conditions

    @staticmethod
    async def list_trainings(
        db: AsyncSession,
        conditions: Optional[list] = None,
        page: int = 1,
        limit: int = 100,
        scope: Optional[TrainingScope] = None
    ) -> Dict[str, Any]:
        """Paginated listing, newest training date first."""
        query = select(Training)
        count_query = select(func.count(Training.id))
        for condition in conditions or []:
            query = query.where(condition)
            count_query = count_query.where(condition)
        if scope is not None:
            query = scope.apply(query)
            count_query = scope.apply(count_query)

        total = (await db.execute(count_query)).scalar() or 0
        result = await db.execute(
            query.order_by(Training.date.desc(), Training.created_at.desc(), Training.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        trainings = result.scalars().all()

        return {
            "count": len(trainings),
            "total": total,
            "page": page,
            "pages": math.ceil(total / limit) if limit else 0,
            "data": [t.to_dict(include_registrations=False) for t in trainings],
        }

    @staticmethod
    async def get_training(db: AsyncSession, training_id: int, fresh: bool = False) -> Training:
        query = select(Training).where(Training.id == training_id)
        if fresh:
            query = query.execution_options(populate_existing=True)
        training = (await db.execute(query)).scalar_one_or_none()
        if training is None:
            raise NotFound("Training not found")
        return training

    @staticmethod
    def ensure_can_manage(user: User, training: Training, action: str = "modify") -> None:
        """Organizer, or an Admin/SuperAdmin whose scope covers the training."""
        if training.organizer_id == user.id:
            return
        if user.role not in _MANAGER_ROLES:
            raise Forbidden(f"Not authorized to {action} this training")
        ensure_state_access(
            user, training.state,
            f"Not authorized to {action} trainings outside your assigned state"
        )

    @staticmethod
    async def create_training(db: AsyncSession, organizer: User, request: TrainingWriteRequest) -> Training:
        training = Training(**request.to_columns())
        training.organizer_id = organizer.id
        training.approval_status = Training.initial_approval_status(organizer.role)
        if training.approval_status == ApprovalStatus.AUTO_APPROVED.value:
            training.approved_by_id = organizer.id
            training.approval_date = utcnow()
        training.registration_count = 0

        db.add(training)
        await db.commit()

        logger.info(
            f"Training {training.id} created by {organizer.id} "
            f"in {training.state} ({training.approval_status})"
        )
        return await TrainingService.get_training(db, training.id, fresh=True)

    @staticmethod
    async def update_training(
        db: AsyncSession,
        user: User,
        training_id: int,
        request: TrainingWriteRequest
    ) -> Training:
        training = await TrainingService.get_training(db, training_id)
        TrainingService.ensure_can_manage(user, training, "update")

        columns = request.to_columns()
        if training.organizer_id != user.id:
            ensure_state_access(
                user, columns["state"],
                "Not authorized to move trainings outside your assigned state"
            )
        if (columns["max_participants"] is not None
                and columns["max_participants"] < training.registration_count):
            raise Conflict("Maximum participants cannot be less than current registrations")

        for field, value in columns.items():
            setattr(training, field, value)
        await db.commit()

        logger.info(f"Training {training_id} updated by {user.id}")
        return await TrainingService.get_training(db, training_id, fresh=True)

    @staticmethod
    async def delete_training(db: AsyncSession, user: User, training_id: int) -> Dict[str, Any]:
        training = await TrainingService.get_training(db, training_id)
        TrainingService.ensure_can_manage(user, training, "delete")

        summary = {"id": training.id, "title": training.title, "state": training.state}
        await db.delete(training)
        await db.commit()

        logger.info(f"Training {training_id} deleted by {user.id}")
        return summary

    @staticmethod
    async def register_user(
        db: AsyncSession,
        user: User,
        training_id: int
    ) -> Tuple[Training, TrainingRegistration]:
        """
        Register the caller for a training.

        Checked in order: duplicate registration (Conflict), capacity
        (CapacityExceeded), deadline (DeadlinePassed).
        """
        training = await TrainingService.get_training(db, training_id)

        if not training.is_public and user.role == Role.VOLUNTEER.value:
            raise Forbidden("This training is not open for public registration")
        if training.registration_for(user.id) is not None:
            raise Conflict("User already registered for this training")
        if training.max_participants is not None and training.registration_count >= training.max_participants:
            raise CapacityExceeded()
        if training.registration_deadline is not None and utcnow() > training.registration_deadline:
            raise DeadlinePassed("Registration deadline has passed")

        claimed = await db.execute(
            update(Training)
            .where(
                and_(
                    Training.id == training_id,
                    or_(
                        Training.max_participants.is_(None),
                        Training.registration_count < Training.max_participants,
                    ),
                )
            )
            .values(registration_count=Training.registration_count + 1)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            await db.rollback()
            raise CapacityExceeded()

        registration = TrainingRegistration(
            training_id=training_id,
            user_id=user.id,
            registered_at=utcnow(),
            status=RegistrationStatus.REGISTERED.value,
        )
        db.add(registration)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise Conflict("User already registered for this training")

        logger.info(f"User {user.id} registered for training {training_id}")
        training = await TrainingService.get_training(db, training_id, fresh=True)
        return training, training.registration_for(user.id)

    @staticmethod
    async def cancel_registration(db: AsyncSession, user: User, training_id: int) -> Training:
        """Remove the caller's registration; a no-op when there is none."""
        training = await TrainingService.get_training(db, training_id)

        removed = await db.execute(
            delete(TrainingRegistration)
            .where(
                and_(
                    TrainingRegistration.training_id == training_id,
                    TrainingRegistration.user_id == user.id,
                )
            )
            .execution_options(synchronize_session=False)
        )
        if removed.rowcount:
            await db.execute(
                update(Training)
                .where(and_(Training.id == training_id, Training.registration_count > 0))
                .values(registration_count=Training.registration_count - 1)
                .execution_options(synchronize_session=False)
            )
            logger.info(f"User {user.id} cancelled registration for training {training_id}")
        await db.commit()

        return await TrainingService.get_training(db, training.id, fresh=True)

    @staticmethod
    async def mark_attendance(
        db: AsyncSession,
        user: User,
        training_id: int,
        request: AttendanceRequest
    ) -> Tuple[Training, TrainingRegistration]:
        training = await TrainingService.get_training(db, training_id)
        TrainingService.ensure_can_manage(user, training, "mark attendance for")

        registration = training.registration_for(request.user_id)
        if registration is None:
            raise NotRegistered("User not registered for this training")

        now = utcnow()
        if request.check_in:
            registration.check_in = now
            registration.present = True
            registration.status = RegistrationStatus.ATTENDED.value
        else:
            registration.check_out = now

        if request.status == RegistrationStatus.ABSENT.value:
            registration.present = False
            registration.status = RegistrationStatus.ABSENT.value
        elif request.status == RegistrationStatus.ATTENDED.value:
            registration.present = True
            registration.status = RegistrationStatus.ATTENDED.value

        await db.commit()
        logger.info(
            f"Attendance for user {request.user_id} on training {training_id}: "
            f"{registration.status} (by {user.id})"
        )
        training = await TrainingService.get_training(db, training_id, fresh=True)
        return training, training.registration_for(request.user_id)

    @staticmethod
    async def approve_training(
        db: AsyncSession,
        approver: User,
        training_id: int,
        approve: bool,
        reason: Optional[str] = None
    ) -> Training:
        training = await TrainingService.get_training(db, training_id)
        ensure_state_access(
            approver, training.state,
            "You can only approve trainings in your assigned state"
        )

        training.approved_by_id = approver.id
        training.approval_date = utcnow()
        if approve:
            training.approval_status = ApprovalStatus.APPROVED.value
            training.rejection_reason = None
        else:
            training.approval_status = ApprovalStatus.REJECTED.value
            training.rejection_reason = reason
        await db.commit()

        logger.info(f"Training {training_id} {training.approval_status} by {approver.id}")
        return await TrainingService.get_training(db, training_id, fresh=True)

    @staticmethod
    async def add_feedback(
        db: AsyncSession,
        user: User,
        training_id: int,
        request: FeedbackRequest
    ) -> Training:
        training = await TrainingService.get_training(db, training_id)
        if training.feedback_from(user.id) is not None:
            raise Conflict("You have already provided feedback for this training")

        db.add(TrainingFeedback(
            training_id=training_id,
            user_id=user.id,
            rating=request.rating,
            comment=request.comment,
            created_at=utcnow(),
        ))
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise Conflict("You have already provided feedback for this training")

        return await TrainingService.get_training(db, training_id, fresh=True)

    @staticmethod
    async def registrations(db: AsyncSession, user: User, training_id: int) -> Dict[str, Any]:
        training = await TrainingService.get_training(db, training_id)
        TrainingService.ensure_can_manage(user, training, "view registrations for")
        return {
            "trainingId": training.id,
            "trainingTitle": training.title,
            "totalRegistrations": len(training.registrations),
            "maxParticipants": training.max_participants,
            "registrations": [r.to_dict() for r in training.registrations],
        }

    @staticmethod
    async def statistics(db: AsyncSession) -> Dict[str, Any]:
        participants = func.coalesce(func.sum(Training.participants_actual), 0)

        total_trainings = (await db.execute(select(func.count(Training.id)))).scalar() or 0
        total_participants = (await db.execute(select(participants))).scalar() or 0

        async def grouped(column) -> List[Dict[str, Any]]:
            rows = (await db.execute(
                select(
                    column.label("key"),
                    func.count(Training.id).label("count"),
                    participants.label("participants"),
                ).group_by(column).order_by(func.count(Training.id).desc())
            )).fetchall()
            return [
                {"_id": row.key, "count": int(row.count), "participants": int(row.participants or 0)}
                for row in rows
            ]

        by_status_rows = (await db.execute(
            select(Training.status, func.count(Training.id)).group_by(Training.status)
        )).fetchall()

        year = extract("year", Training.date)
        month = extract("month", Training.date)
        monthly_rows = (await db.execute(
            select(
                year.label("year"),
                month.label("month"),
                func.count(Training.id).label("count"),
                participants.label("participants"),
            ).group_by(year, month).order_by(year, month)
        )).fetchall()

        return {
            "totalTrainings": total_trainings,
            "totalParticipants": int(total_participants),
            "trainingsByTheme": await grouped(Training.theme),
            "trainingsByInstitution": await grouped(Training.institution),
            "trainingsByStatus": [{"_id": status, "count": count} for status, count in by_status_rows],
            "monthlyTrend": [
                {
                    "_id": {"year": int(row.year), "month": int(row.month)},
                    "count": int(row.count),
                    "participants": int(row.participants or 0),
                }
                for row in monthly_rows
            ],
        }

    @staticmethod
    async def due_reminders(
        db: AsyncSession,
        lead_hours: int,
        now: Optional[datetime] = None
    ) -> List[Training]:
        """Approved, scheduled trainings starting within lead_hours that have not been reminded."""
        now = now or utcnow()
        result = await db.execute(
            select(Training).where(
                and_(
                    Training.reminder_sent == False,
                    Training.status == TrainingStatus.SCHEDULED.value,
                    Training.approval_status.in_(
                        [ApprovalStatus.APPROVED.value, ApprovalStatus.AUTO_APPROVED.value]
                    ),
                    Training.date > now,
                    Training.date <= now + timedelta(hours=lead_hours),
                )
            ).order_by(Training.date)
        )
        return list(result.scalars().all())

    @staticmethod
    async def mark_reminders_sent(db: AsyncSession, training_ids: List[int]) -> None:
        if not training_ids:
            return
        await db.execute(
            update(Training)
            .where(Training.id.in_(training_ids))
            .values(reminder_sent=True)
            .execution_options(synchronize_session=False)
        )
        await db.commit()

    @staticmethod
    async def nearby(
        db: AsyncSession,
        longitude: float,
        latitude: float,
        max_distance_m: int = DEFAULT_NEARBY_DISTANCE_M
    ) -> List[Dict[str, Any]]:
        """Trainings within max_distance_m of a point, nearest first."""
        # Coarse bounding box in degrees before the exact distance check
        lat_delta = math.degrees(max_distance_m / EARTH_RADIUS_M)
        cos_lat = max(math.cos(math.radians(latitude)), 0.01)
        lon_delta = min(lat_delta / cos_lat, 180.0)

        result = await db.execute(
            select(Training).where(
                and_(
                    Training.latitude.between(latitude - lat_delta, latitude + lat_delta),
                    Training.longitude.between(longitude - lon_delta, longitude + lon_delta),
                )
            )
        )

        matches = []
        for training in result.scalars().all():
            distance = haversine_m(longitude, latitude, training.longitude, training.latitude)
            if distance <= max_distance_m:
                matches.append((distance, training))
        matches.sort(key=lambda pair: pair[0])

        nearby = []
        for distance, training in matches:
            data = training.to_dict(include_registrations=False)
            data["distance"] = round(distance, 1)
            nearby.append(data)
        return nearby
