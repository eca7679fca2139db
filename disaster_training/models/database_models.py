"""
SQLAlchemy Database Models for the Disaster Training Platform.

The training aggregate is stored relationally: trainings own their
registrations and feedback through child tables, nested documents (trainer,
participants, duration, location) are flattened into columns and rebuilt by
Training.to_dict().
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    Column, String, Integer, Float, Text, Boolean,
    ForeignKey, DateTime, JSON,
    CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from disaster_training.database import Base
from disaster_training.models.roles import (
    Role, Permission, ApprovalStatus, TrainingStatus, RegistrationStatus,
    TRAINING_AUTO_APPROVE_ROLES, default_policy, parse_role, permissions_for,
)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


_PERMISSION_COLUMNS = {
    Permission.CREATE_TRAINING.value: "can_create_training",
    Permission.APPROVE_TRAINING.value: "can_approve_training",
    Permission.MANAGE_USERS.value: "can_manage_users",
    Permission.VIEW_ALL_STATES.value: "can_view_all_states",
    Permission.GENERATE_REPORTS.value: "can_generate_reports",
    Permission.MANAGE_SYSTEM.value: "can_manage_system",
}


# ============================================
# USERS
# ============================================
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(Text, nullable=False)
    role = Column(String(20), nullable=False, default=Role.VOLUNTEER.value)
    organization = Column(Text)
    state = Column(String(64))
    phone = Column(String(32))

    is_approved = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    approved_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    rejection_reason = Column(Text)

    # Permission flags, always derived from role
    can_create_training = Column(Boolean, nullable=False, default=False)
    can_approve_training = Column(Boolean, nullable=False, default=False)
    can_manage_users = Column(Boolean, nullable=False, default=False)
    can_view_all_states = Column(Boolean, nullable=False, default=False)
    can_generate_reports = Column(Boolean, nullable=False, default=False)
    can_manage_system = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("role IN ('SuperAdmin', 'Admin', 'ATI', 'NGO', 'Volunteer')"),
        Index("ix_users_role_approved", "role", "is_approved"),
        Index("ix_users_state_role", "state", "role"),
    )

    @classmethod
    def create_with_role(
        cls,
        *,
        name: str,
        email: str,
        password_hash: str,
        role: str = Role.VOLUNTEER.value,
        state: Optional[str] = None,
        organization: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> "User":
        """Build a user whose permissions, approval and state follow its role."""
        role = parse_role(role)
        is_approved, state = default_policy(role, state)
        user = cls(
            name=name,
            email=email.strip().lower(),
            password_hash=password_hash,
            organization=organization,
            phone=phone,
            is_active=True,
            is_approved=is_approved,
        )
        user.role = role.value
        user.state = state
        user._apply_permissions(role)
        return user

    def change_role(self, role: str, state: Optional[str] = None) -> None:
        """Move the user to a new role and recompute its permission set."""
        role = parse_role(role)
        _, state = default_policy(role, state if state is not None else self.state)
        self.role = role.value
        self.state = state
        self._apply_permissions(role)
        if role == Role.SUPER_ADMIN:
            self.is_approved = True

    def _apply_permissions(self, role: Role) -> None:
        for key, value in permissions_for(role).items():
            setattr(self, _PERMISSION_COLUMNS[key], value)

    @property
    def permissions(self) -> Dict[str, bool]:
        return {key: bool(getattr(self, column)) for key, column in _PERMISSION_COLUMNS.items()}

    def has_permission(self, permission: str) -> bool:
        column = _PERMISSION_COLUMNS.get(permission)
        return bool(column and getattr(self, column))

    @property
    def requires_approval(self) -> bool:
        return self.role not in (Role.VOLUNTEER.value, Role.SUPER_ADMIN.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "organization": self.organization,
            "state": self.state,
            "phone": self.phone,
            "isApproved": self.is_approved,
            "isActive": self.is_active,
            "approvedBy": self.approved_by_id,
            "permissions": self.permissions,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def to_summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "organization": self.organization,
        }


# ============================================
# TRAININGS
# ============================================
class Training(Base):
    __tablename__ = "trainings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    date = Column(DateTime, nullable=False)
    end_date = Column(DateTime)
    theme = Column(String(100), nullable=False)
    state = Column(String(64), nullable=False)
    district = Column(String(120), nullable=False)

    trainer_name = Column(Text, nullable=False)
    trainer_qualification = Column(Text)
    trainer_organization = Column(Text)
    trainer_contact = Column(Text)

    institution = Column(Text, nullable=False)

    participants_planned = Column(Integer, nullable=False)
    participants_actual = Column(Integer, nullable=False, default=0)
    participants_male = Column(Integer, nullable=False, default=0)
    participants_female = Column(Integer, nullable=False, default=0)

    duration_hours = Column(Float, nullable=False)
    duration_days = Column(Integer, nullable=False, default=1)

    longitude = Column(Float, nullable=False)
    latitude = Column(Float, nullable=False)
    location_name = Column(Text)
    location_address = Column(Text, nullable=False)
    location_pincode = Column(String(6))

    training_type = Column(String(40), nullable=False)
    target_audience = Column(String(40), nullable=False)
    status = Column(String(20), nullable=False, default=TrainingStatus.SCHEDULED.value)

    organizer_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True)
    resources = Column(JSON, default=list)
    tags = Column(JSON, default=list)

    approval_status = Column(String(20), nullable=False, default=ApprovalStatus.PENDING.value)
    approved_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"))
    approval_date = Column(DateTime)
    rejection_reason = Column(Text)

    max_participants = Column(Integer)
    registration_count = Column(Integer, nullable=False, default=0)
    registration_deadline = Column(DateTime)
    is_public = Column(Boolean, nullable=False, default=True)

    reminder_sent = Column(Boolean, nullable=False, default=False)
    followup_sent = Column(Boolean, nullable=False, default=False)
    report_generated = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    organizer = relationship("User", foreign_keys=[organizer_id], lazy="selectin")
    registrations = relationship(
        "TrainingRegistration",
        back_populates="training",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TrainingRegistration.registered_at",
    )
    feedback = relationship(
        "TrainingFeedback",
        back_populates="training",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TrainingFeedback.created_at",
    )

    __table_args__ = (
        CheckConstraint("status IN ('Scheduled', 'Ongoing', 'Completed', 'Cancelled')"),
        CheckConstraint("approval_status IN ('Pending', 'Approved', 'Rejected', 'Auto-Approved')"),
        CheckConstraint("duration_hours >= 0.5 AND duration_hours <= 720"),
        CheckConstraint("participants_planned >= 1 AND participants_planned <= 10000"),
        CheckConstraint("registration_count >= 0"),
        Index("ix_trainings_state_date", "state", "date"),
        Index("ix_trainings_theme_approval", "theme", "approval_status"),
        Index("ix_trainings_approval_date", "approval_status", "date"),
    )

    @staticmethod
    def initial_approval_status(organizer_role: str) -> str:
        if parse_role(organizer_role) in TRAINING_AUTO_APPROVE_ROLES:
            return ApprovalStatus.AUTO_APPROVED.value
        return ApprovalStatus.PENDING.value

    def registration_for(self, user_id: int) -> Optional["TrainingRegistration"]:
        for registration in self.registrations:
            if registration.user_id == user_id:
                return registration
        return None

    def feedback_from(self, user_id: int) -> Optional["TrainingFeedback"]:
        for item in self.feedback:
            if item.user_id == user_id:
                return item
        return None

    @property
    def registrant_ids(self) -> list:
        return [r.user_id for r in self.registrations]

    def to_dict(self, include_registrations: bool = True) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "date": _iso(self.date),
            "endDate": _iso(self.end_date),
            "theme": self.theme,
            "state": self.state,
            "district": self.district,
            "trainer": {
                "name": self.trainer_name,
                "qualification": self.trainer_qualification,
                "organization": self.trainer_organization,
                "contact": self.trainer_contact,
            },
            "institution": self.institution,
            "participants": {
                "planned": self.participants_planned,
                "actual": self.participants_actual,
                "male": self.participants_male,
                "female": self.participants_female,
            },
            "duration": {
                "hours": self.duration_hours,
                "days": self.duration_days,
            },
            "location": {
                "type": "Point",
                "coordinates": [self.longitude, self.latitude],
                "name": self.location_name,
                "address": self.location_address,
                "pincode": self.location_pincode,
            },
            "trainingType": self.training_type,
            "targetAudience": self.target_audience,
            "status": self.status,
            "organizer": self.organizer.to_summary() if self.organizer else self.organizer_id,
            "resources": self.resources or [],
            "tags": self.tags or [],
            "feedback": [f.to_dict() for f in self.feedback],
            "approvalStatus": self.approval_status,
            "approvedBy": self.approved_by_id,
            "approvalDate": _iso(self.approval_date),
            "rejectionReason": self.rejection_reason,
            "maxParticipants": self.max_participants,
            "registrationCount": self.registration_count,
            "registrationDeadline": _iso(self.registration_deadline),
            "isPublic": self.is_public,
            "notifications": {
                "reminderSent": self.reminder_sent,
                "followupSent": self.followup_sent,
                "reportGenerated": self.report_generated,
            },
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
        if include_registrations:
            data["registrations"] = [r.to_dict() for r in self.registrations]
        return data


# ============================================
# TRAINING REGISTRATIONS
# ============================================
class TrainingRegistration(Base):
    __tablename__ = "training_registrations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    training_id = Column(Integer, ForeignKey("trainings.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    registered_at = Column(DateTime, default=utcnow)
    status = Column(String(20), nullable=False, default=RegistrationStatus.REGISTERED.value)

    check_in = Column(DateTime)
    check_out = Column(DateTime)
    present = Column(Boolean, nullable=False, default=False)

    certificate_issued = Column(Boolean, nullable=False, default=False)
    certificate_issued_at = Column(DateTime)
    certificate_id = Column(String(64))

    training = relationship("Training", back_populates="registrations")
    user = relationship("User", lazy="selectin")

    __table_args__ = (
        CheckConstraint("status IN ('Registered', 'Attended', 'Absent', 'Cancelled')"),
        UniqueConstraint("training_id", "user_id", name="uq_training_user_registration"),
    )

    def to_dict(self) -> Dict[str, Any]:
        user = self.user
        return {
            "user": {
                "id": user.id,
                "name": user.name,
                "email": user.email,
                "phone": user.phone,
                "organization": user.organization,
                "role": user.role,
            } if user else self.user_id,
            "registeredAt": _iso(self.registered_at),
            "status": self.status,
            "attendance": {
                "checkIn": _iso(self.check_in),
                "checkOut": _iso(self.check_out),
                "present": self.present,
            },
            "certificate": {
                "issued": self.certificate_issued,
                "issuedAt": _iso(self.certificate_issued_at),
                "certificateId": self.certificate_id,
            },
        }


# ============================================
# TRAINING FEEDBACK
# ============================================
class TrainingFeedback(Base):
    __tablename__ = "training_feedback"

    id = Column(Integer, primary_key=True, autoincrement=True)
    training_id = Column(Integer, ForeignKey("trainings.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text)
    created_at = Column(DateTime, default=utcnow)

    training = relationship("Training", back_populates="feedback")
    user = relationship("User", lazy="selectin")

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5"),
        UniqueConstraint("training_id", "user_id", name="uq_training_user_feedback"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": {"id": self.user.id, "name": self.user.name} if self.user else self.user_id,
            "rating": self.rating,
            "comment": self.comment,
            "createdAt": _iso(self.created_at),
        }
