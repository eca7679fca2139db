"""
Training API endpoints.

=============================================================================
TRAINING LIFECYCLE
=============================================================================

Create -> (Pending | Auto-Approved) -> Approved / Rejected

- Trainings created by Admin / SuperAdmin are Auto-Approved
- ATI / NGO trainings stay Pending until an approver of the same state acts
- Registration: one per user, refused when full or past the deadline
- Every committed change is pushed to the notification hub

Endpoints:
- GET /trainings: Public list with filters and pagination
- POST /trainings: Create (canCreateTraining)
- GET /trainings/manage: List scoped to the caller
- GET /trainings/stats/analytics: Totals and breakdowns
- GET /trainings/nearby/{lng}/{lat}: Distance search
- GET|PUT|DELETE /trainings/{training_id}
- POST|DELETE /trainings/{training_id}/register
- GET /trainings/{training_id}/registrations
- PUT /trainings/{training_id}/attendance
- PUT /trainings/{training_id}/approve (canApproveTraining)
- POST /trainings/{training_id}/feedback
"""
from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from datetime import datetime
import logging

from disaster_training.database import get_db
from disaster_training.dependencies import (
    TrainingScope, get_current_user, get_hub, get_optional_user, get_training_scope, require_permissions,
)
from disaster_training.hubs.notification_hub import NotificationHub
from disaster_training.models.database_models import User, to_naive_utc
from disaster_training.models.roles import Permission, TrainingStatus
from disaster_training.services.training_service import DEFAULT_NEARBY_DISTANCE_M, TrainingService
from disaster_training.schemas.schemas import (
    AttendanceRequest,
    FeedbackRequest,
    LATITUDE_RANGE,
    LONGITUDE_RANGE,
    TrainingApprovalRequest,
    TrainingWriteRequest,
    envelope,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/trainings", tags=["Trainings"])


def _list_filters(
    theme: Optional[str] = Query(None),
    institution: Optional[str] = Query(None),
    status: Optional[TrainingStatus] = Query(None),
    state: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate")
) -> list:
    return TrainingService.build_filters(
        theme=theme,
        institution=institution,
        status=status.value if status else None,
        state=state,
        start_date=to_naive_utc(start_date),
        end_date=to_naive_utc(end_date),
    )


@router.get(
    "",
    summary="List Trainings",
    description="Public listing, newest first. Filters: theme, institution, status, state, startDate, endDate."
)
async def list_trainings(
    conditions: list = Depends(_list_filters),
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=100),
    db: AsyncSession = Depends(get_db)
):
    result = await TrainingService.list_trainings(db, conditions, page=page, limit=limit)
    return envelope(result.pop("data"), **result)


@router.post(
    "",
    status_code=201,
    summary="Create Training",
    description="""
    Create a training organized by the caller.

    Approval status follows the organizer role: Admin and SuperAdmin
    trainings are Auto-Approved, everything else starts Pending.
    """
)
async def create_training(
    request: TrainingWriteRequest,
    user: User = Depends(require_permissions(Permission.CREATE_TRAINING.value)),
    db: AsyncSession = Depends(get_db),
    hub: NotificationHub = Depends(get_hub)
):
    training = await TrainingService.create_training(db, user, request)
    await hub.training_added(training.to_dict(include_registrations=False))
    return envelope(training.to_dict(), message="Training created successfully")


@router.get(
    "/manage",
    summary="Managed Trainings",
    description="""
    Trainings visible to the caller for management:
    SuperAdmin all, state Admin own state, ATI/NGO their own trainings.
    """
)
async def list_managed_trainings(
    conditions: list = Depends(_list_filters),
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=100),
    scope: TrainingScope = Depends(get_training_scope),
    db: AsyncSession = Depends(get_db)
):
    result = await TrainingService.list_trainings(db, conditions, page=page, limit=limit, scope=scope)
    return envelope(result.pop("data"), readOnly=scope.read_only, **result)


@router.get("/stats/analytics", summary="Training Statistics")
async def training_statistics(db: AsyncSession = Depends(get_db)):
    return envelope(await TrainingService.statistics(db))


@router.get(
    "/nearby/{lng}/{lat}",
    summary="Nearby Trainings",
    description="Trainings within maxDistance metres (default 100 km), nearest first."
)
async def nearby_trainings(
    lng: float = Path(..., ge=LONGITUDE_RANGE[0], le=LONGITUDE_RANGE[1]),
    lat: float = Path(..., ge=LATITUDE_RANGE[0], le=LATITUDE_RANGE[1]),
    max_distance: int = Query(DEFAULT_NEARBY_DISTANCE_M, alias="maxDistance", ge=1, le=5000000),
    db: AsyncSession = Depends(get_db)
):
    trainings = await TrainingService.nearby(db, lng, lat, max_distance)
    return envelope(trainings, count=len(trainings))


@router.get("/{training_id}", summary="Get Training")
async def get_training(
    training_id: int,
    viewer: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db)
):
    training = await TrainingService.get_training(db, training_id)
    if viewer is None:
        return envelope(training.to_dict())
    return envelope(training.to_dict(), isRegistered=training.registration_for(viewer.id) is not None)


@router.put(
    "/{training_id}",
    summary="Update Training",
    description="Organizer, Admin or SuperAdmin. The document is replaced in full."
)
async def update_training(
    training_id: int,
    request: TrainingWriteRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    hub: NotificationHub = Depends(get_hub)
):
    training = await TrainingService.update_training(db, user, training_id, request)
    await hub.training_updated(
        training.to_dict(include_registrations=False),
        registrant_ids=training.registrant_ids,
    )
    return envelope(training.to_dict(), message="Training updated successfully")


@router.delete("/{training_id}", summary="Delete Training")
async def delete_training(
    training_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    hub: NotificationHub = Depends(get_hub)
):
    deleted = await TrainingService.delete_training(db, user, training_id)
    await hub.training_deleted(deleted["id"])
    return envelope({}, message="Training deleted successfully")


@router.post(
    "/{training_id}/register",
    summary="Register for Training",
    description="""
    Register the caller. Refused with:
    - 409 when already registered
    - 409 when the training is full
    - 400 when the registration deadline has passed
    - 403 when a Volunteer targets a private training
    """
)
async def register_for_training(
    training_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    hub: NotificationHub = Depends(get_hub)
):
    training, registration = await TrainingService.register_user(db, user, training_id)
    await hub.user_registered(
        training_id=training.id,
        organizer_id=training.organizer_id,
        user_name=user.name,
        user_email=user.email,
        new_count=training.registration_count,
        max_participants=training.max_participants,
    )
    return envelope(
        {
            "trainingId": training.id,
            "userId": user.id,
            "registeredAt": registration.registered_at.isoformat(),
            "registrationCount": training.registration_count,
        },
        message="Successfully registered for training",
    )


@router.delete("/{training_id}/register", summary="Cancel Registration")
async def cancel_registration(
    training_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    training = await TrainingService.cancel_registration(db, user, training_id)
    return envelope(
        {"trainingId": training.id, "registrationCount": training.registration_count},
        message="Registration cancelled successfully",
    )


@router.get("/{training_id}/registrations", summary="Training Registrations")
async def training_registrations(
    training_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return envelope(await TrainingService.registrations(db, user, training_id))


@router.put(
    "/{training_id}/attendance",
    summary="Mark Attendance",
    description="Organizer, Admin or SuperAdmin. checkIn=false records a check-out."
)
async def mark_attendance(
    training_id: int,
    request: AttendanceRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    hub: NotificationHub = Depends(get_hub)
):
    training, registration = await TrainingService.mark_attendance(db, user, training_id, request)
    await hub.attendance_marked(
        training_id=training.id,
        user_id=request.user_id,
        status=registration.status,
        marked_by=user.name,
    )
    return envelope(registration.to_dict(), message="Attendance marked successfully")


@router.put(
    "/{training_id}/approve",
    summary="Approve or Reject Training",
    description="Requires canApproveTraining; state Admins only act on their own state."
)
async def approve_training(
    training_id: int,
    request: TrainingApprovalRequest,
    user: User = Depends(require_permissions(Permission.APPROVE_TRAINING.value)),
    db: AsyncSession = Depends(get_db),
    hub: NotificationHub = Depends(get_hub)
):
    training = await TrainingService.approve_training(db, user, training_id, request.approve, request.reason)
    await hub.approval_decision(
        training_id=training.id,
        title=training.title,
        organizer_id=training.organizer_id,
        status=training.approval_status,
        approved_by=user.name,
        reason=training.rejection_reason,
        registrant_ids=training.registrant_ids,
    )
    verb = "approved" if request.approve else "rejected"
    return envelope(
        {
            "approvalStatus": training.approval_status,
            "approvedBy": user.id,
            "approvalDate": training.approval_date.isoformat() if training.approval_date else None,
        },
        message=f"Training {verb} successfully",
    )


@router.post("/{training_id}/feedback", status_code=201, summary="Add Feedback")
async def add_feedback(
    training_id: int,
    request: FeedbackRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    training = await TrainingService.add_feedback(db, user, training_id, request)
    return envelope(training.to_dict(), message="Feedback added successfully")
