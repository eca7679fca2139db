"""
Pydantic Schemas for the Disaster Training Platform APIs.
Request models for all endpoints and the response envelope helper.

Wire format is camelCase (maxParticipants, isPublic, ...); fields are
declared in snake_case and aliased.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime
import re

from disaster_training.models.database_models import to_naive_utc
from disaster_training.models.roles import (
    Role, TrainingStatus,
    INDIAN_STATES, USER_STATES, TRAINING_THEMES, TRAINING_TYPES, TARGET_AUDIENCES,
)

# India bounding box, [longitude, latitude]
LONGITUDE_RANGE = (68.7, 97.25)
LATITUDE_RANGE = (8.4, 37.6)
MAX_PARTICIPANTS = 10000

EMAIL_PATTERN = re.compile(r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$")
NAME_PATTERN = re.compile(r"^[a-zA-Z\s]+$")
PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")
PINCODE_PATTERN = re.compile(r"^[1-9][0-9]{5}$")


def envelope(
    data: Any = None,
    message: Optional[str] = None,
    success: bool = True,
    **extra: Any
) -> Dict[str, Any]:
    """Build the standard {success, message?, data?} response body."""
    body: Dict[str, Any] = {"success": success}
    if message is not None:
        body["message"] = message
    body.update(extra)
    if data is not None:
        body["data"] = data
    return body


def _check_password_strength(v: str) -> str:
    if not PASSWORD_PATTERN.match(v):
        raise ValueError(
            "Password must contain at least one uppercase letter, one lowercase letter, and one number"
        )
    return v


def _one_of(value: Optional[str], allowed, label: str) -> Optional[str]:
    if value is not None and value not in allowed:
        raise ValueError(f"Invalid {label} '{value}'")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================
# AUTH SCHEMAS
# ============================================
class UserRegisterRequest(CamelModel):
    """Public account registration."""
    name: str = Field(..., min_length=2, max_length=50)
    email: str
    password: str = Field(..., min_length=6)
    role: Role = Role.VOLUNTEER
    organization: Optional[str] = Field(None, min_length=2, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    state: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_letters_only(cls, v: str) -> str:
        v = v.strip()
        if not NAME_PATTERN.match(v):
            raise ValueError("Name can only contain letters and spaces")
        return v

    @field_validator("email")
    @classmethod
    def email_format(cls, v: str) -> str:
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Please provide a valid email")
        return v

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _check_password_strength(v)

    @field_validator("state")
    @classmethod
    def known_state(cls, v: Optional[str]) -> Optional[str]:
        return _one_of(v, USER_STATES, "state")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "name": "Asha Patel",
                "email": "asha@example.org",
                "password": "Secret123",
                "role": "NGO",
                "organization": "Seva Trust",
                "state": "Gujarat"
            }
        }
    )


class LoginRequest(CamelModel):
    email: str
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class ProfileUpdateRequest(CamelModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    organization: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _check_password_strength(v)


class ApproveUserRequest(CamelModel):
    approve: bool
    reason: Optional[str] = Field(None, max_length=500)


class AdminUserUpdateRequest(CamelModel):
    """SuperAdmin update of another account. Permissions follow the role."""
    role: Optional[Role] = None
    state: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("state")
    @classmethod
    def known_state(cls, v: Optional[str]) -> Optional[str]:
        return _one_of(v, USER_STATES, "state")


# ============================================
# TRAINING SCHEMAS
# ============================================
class TrainerSchema(CamelModel):
    name: str = Field(..., min_length=1)
    qualification: Optional[str] = None
    organization: Optional[str] = None
    contact: Optional[str] = None


class ParticipantsSchema(CamelModel):
    # actual is tracked independently of planned (walk-ins are allowed)
    planned: int = Field(..., ge=1, le=MAX_PARTICIPANTS)
    actual: int = Field(0, ge=0, le=MAX_PARTICIPANTS)
    male: int = Field(0, ge=0)
    female: int = Field(0, ge=0)


class DurationSchema(CamelModel):
    hours: float = Field(..., ge=0.5, le=720)
    days: int = Field(1, ge=1)


class LocationSchema(CamelModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(..., description="[longitude, latitude]")
    name: Optional[str] = None
    address: str = Field(..., min_length=1)
    pincode: Optional[str] = None

    @field_validator("coordinates")
    @classmethod
    def within_india(cls, v: List[float]) -> List[float]:
        if len(v) != 2:
            raise ValueError("Coordinates must be [longitude, latitude]")
        lon, lat = v
        if not (LONGITUDE_RANGE[0] <= lon <= LONGITUDE_RANGE[1]
                and LATITUDE_RANGE[0] <= lat <= LATITUDE_RANGE[1]):
            raise ValueError("Coordinates must be within India boundaries")
        return v

    @field_validator("pincode")
    @classmethod
    def pincode_format(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not PINCODE_PATTERN.match(v):
            raise ValueError("Invalid pincode format")
        return v


class ResourceSchema(CamelModel):
    name: Optional[str] = None
    url: Optional[str] = None
    type: Optional[str] = None


class TrainingWriteRequest(CamelModel):
    """Full training document, used for both create and (replace) update."""
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=1000)
    date: datetime
    end_date: Optional[datetime] = None
    theme: str
    state: str
    district: str = Field(..., min_length=1)
    trainer: TrainerSchema
    institution: str = Field(..., min_length=1)
    participants: ParticipantsSchema
    duration: DurationSchema
    location: LocationSchema
    training_type: str
    target_audience: str
    status: TrainingStatus = TrainingStatus.SCHEDULED
    resources: List[ResourceSchema] = []
    max_participants: Optional[int] = Field(None, ge=1, le=MAX_PARTICIPANTS)
    registration_deadline: Optional[datetime] = None
    is_public: bool = True
    tags: List[str] = []

    @field_validator("theme")
    @classmethod
    def known_theme(cls, v: str) -> str:
        return _one_of(v, TRAINING_THEMES, "theme")

    @field_validator("state")
    @classmethod
    def known_state(cls, v: str) -> str:
        return _one_of(v, INDIAN_STATES, "state")

    @field_validator("training_type")
    @classmethod
    def known_type(cls, v: str) -> str:
        return _one_of(v, TRAINING_TYPES, "training type")

    @field_validator("target_audience")
    @classmethod
    def known_audience(cls, v: str) -> str:
        return _one_of(v, TARGET_AUDIENCES, "target audience")

    @field_validator("date", "end_date", "registration_deadline")
    @classmethod
    def naive_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)

    @model_validator(mode="after")
    def capacity_covers_plan(self):
        if self.max_participants is not None and self.max_participants < self.participants.planned:
            raise ValueError("Maximum participants cannot be less than planned participants")
        return self

    def to_columns(self) -> Dict[str, Any]:
        """Flatten into Training column values."""
        lon, lat = self.location.coordinates
        return {
            "title": self.title.strip(),
            "description": self.description.strip(),
            "date": self.date,
            "end_date": self.end_date,
            "theme": self.theme,
            "state": self.state,
            "district": self.district.strip(),
            "trainer_name": self.trainer.name.strip(),
            "trainer_qualification": self.trainer.qualification,
            "trainer_organization": self.trainer.organization,
            "trainer_contact": self.trainer.contact,
            "institution": self.institution.strip(),
            "participants_planned": self.participants.planned,
            "participants_actual": self.participants.actual,
            "participants_male": self.participants.male,
            "participants_female": self.participants.female,
            "duration_hours": self.duration.hours,
            "duration_days": self.duration.days,
            "longitude": lon,
            "latitude": lat,
            "location_name": self.location.name,
            "location_address": self.location.address.strip(),
            "location_pincode": self.location.pincode,
            "training_type": self.training_type,
            "target_audience": self.target_audience,
            "status": self.status.value,
            "resources": [r.model_dump() for r in self.resources],
            "max_participants": self.max_participants,
            "registration_deadline": self.registration_deadline,
            "is_public": self.is_public,
            "tags": list(self.tags),
        }


class FeedbackRequest(CamelModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=1000)


class AttendanceRequest(CamelModel):
    user_id: int
    check_in: bool = True
    status: Optional[Literal["Attended", "Absent"]] = None


class TrainingApprovalRequest(CamelModel):
    approve: bool
    reason: Optional[str] = Field(None, max_length=500)
