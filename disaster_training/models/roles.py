"""
Credential & Role Model.

Roles, the fixed role -> permission mapping, the management hierarchy and the
closed vocabularies (states, themes, ...) shared by models, schemas and the
real-time hub.
"""
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from disaster_training.exceptions import ValidationError


class Role(str, Enum):
    SUPER_ADMIN = "SuperAdmin"
    ADMIN = "Admin"
    ATI = "ATI"
    NGO = "NGO"
    VOLUNTEER = "Volunteer"


class Permission(str, Enum):
    CREATE_TRAINING = "canCreateTraining"
    APPROVE_TRAINING = "canApproveTraining"
    MANAGE_USERS = "canManageUsers"
    VIEW_ALL_STATES = "canViewAllStates"
    GENERATE_REPORTS = "canGenerateReports"
    MANAGE_SYSTEM = "canManageSystem"


ALL_STATES = "All"

INDIAN_STATES = (
    "Andhra Pradesh", "Arunachal Pradesh", "Assam", "Bihar", "Chhattisgarh",
    "Goa", "Gujarat", "Haryana", "Himachal Pradesh", "Jharkhand",
    "Karnataka", "Kerala", "Madhya Pradesh", "Maharashtra", "Manipur",
    "Meghalaya", "Mizoram", "Nagaland", "Odisha", "Punjab",
    "Rajasthan", "Sikkim", "Tamil Nadu", "Telangana", "Tripura",
    "Uttar Pradesh", "Uttarakhand", "West Bengal",
    "Andaman and Nicobar Islands", "Chandigarh",
    "Dadra and Nagar Haveli and Daman and Diu",
    "Delhi", "Jammu and Kashmir", "Ladakh", "Lakshadweep", "Puducherry",
)

USER_STATES = INDIAN_STATES + (ALL_STATES,)

TRAINING_THEMES = (
    "Flood Management",
    "Earthquake Safety",
    "Cyclone Management",
    "Fire Safety",
    "Landslide Prevention",
    "Drought Management",
    "Tsunami Preparedness",
    "Medical Emergency",
    "Search and Rescue",
    "Community Awareness",
    "CBDRR (Community Based Disaster Risk Reduction)",
    "IRS (Incident Response System)",
    "Emergency Operations Center (EOC)",
    "Early Warning Systems",
    "School Safety",
)

TRAINING_TYPES = (
    "Workshop", "Drill", "Simulation", "Seminar",
    "Mock Exercise", "Awareness Program", "Capacity Building",
)

TARGET_AUDIENCES = (
    "Government Officials", "NGO Workers", "Volunteers", "School Students",
    "Community Members", "First Responders", "Mixed Audience",
)


class TrainingStatus(str, Enum):
    SCHEDULED = "Scheduled"
    ONGOING = "Ongoing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class ApprovalStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    AUTO_APPROVED = "Auto-Approved"


class RegistrationStatus(str, Enum):
    REGISTERED = "Registered"
    ATTENDED = "Attended"
    ABSENT = "Absent"
    CANCELLED = "Cancelled"


# Management ordering: a user may only manage users strictly below them
ROLE_HIERARCHY: Dict[Role, int] = {
    Role.SUPER_ADMIN: 5,
    Role.ADMIN: 4,
    Role.ATI: 3,
    Role.NGO: 2,
    Role.VOLUNTEER: 1,
}

_GRANTS: Dict[Role, Tuple[Permission, ...]] = {
    Role.SUPER_ADMIN: tuple(Permission),
    Role.ADMIN: (
        Permission.CREATE_TRAINING,
        Permission.APPROVE_TRAINING,
        Permission.MANAGE_USERS,
        Permission.GENERATE_REPORTS,
    ),
    Role.ATI: (
        Permission.CREATE_TRAINING,
        Permission.GENERATE_REPORTS,
    ),
    Role.NGO: (
        Permission.CREATE_TRAINING,
    ),
    Role.VOLUNTEER: (),
}

AUTO_APPROVED_ROLES = frozenset({Role.SUPER_ADMIN, Role.VOLUNTEER})
STATE_REQUIRED_ROLES = frozenset({Role.ADMIN, Role.ATI, Role.NGO})
TRAINING_AUTO_APPROVE_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN})


def parse_role(value: Union[str, Role]) -> Role:
    """Coerce a role name, raising ValidationError for unknown roles."""
    try:
        return Role(value)
    except ValueError:
        raise ValidationError(
            "Invalid role specified",
            errors=[{"field": "role", "message": f"Unknown role '{value}'"}]
        )


def permissions_for(role: Union[str, Role]) -> Dict[str, bool]:
    """Return the complete, fixed permission set for a role."""
    granted = _GRANTS[parse_role(role)]
    return {permission.value: permission in granted for permission in Permission}


def default_policy(role: Union[str, Role], state: Optional[str]) -> Tuple[bool, Optional[str]]:
    """
    Creation-time policy for a role.

    Returns (is_approved, state). SuperAdmin always gets state "All";
    Admin/ATI/NGO must supply a state.
    """
    role = parse_role(role)
    if role == Role.SUPER_ADMIN:
        state = ALL_STATES
    elif role in STATE_REQUIRED_ROLES and not state:
        raise ValidationError(
            "State is required for this role",
            errors=[{"field": "state", "message": f"State is required for role {role.value}"}]
        )
    if state is not None and state not in USER_STATES:
        raise ValidationError(
            "Invalid state specified",
            errors=[{"field": "state", "message": f"Unknown state '{state}'"}]
        )
    return role in AUTO_APPROVED_ROLES, state


def can_manage(
    actor_role: Union[str, Role],
    actor_permissions: Dict[str, bool],
    target_role: Union[str, Role],
) -> bool:
    """True iff the actor holds canManageUsers and strictly outranks the target."""
    if not actor_permissions.get(Permission.MANAGE_USERS.value, False):
        return False
    return ROLE_HIERARCHY[parse_role(actor_role)] > ROLE_HIERARCHY[parse_role(target_role)]
