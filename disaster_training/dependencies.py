"""
FastAPI dependencies for the Disaster Training Platform.

Authentication, role/permission/state authorization and the row-level
training scope derived from the caller.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from disaster_training.database import get_db
from disaster_training.exceptions import Forbidden, PendingApproval, Unauthenticated
from disaster_training.models.database_models import Training, User
from disaster_training.models.roles import ALL_STATES, Permission, Role, parse_role
from disaster_training.security import decode_access_token

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db)
) -> User:
    """Resolve the bearer token to an active, approved user."""
    if credentials is None or not credentials.credentials:
        raise Unauthenticated("Access denied. No token provided.")

    payload = decode_access_token(credentials.credentials)
    user = await db.get(User, int(payload["sub"]))

    if user is None:
        raise Unauthenticated("Invalid token. User not found.")
    if not user.is_active:
        raise Unauthenticated("Account is deactivated.")
    if not user.is_approved and user.requires_approval:
        raise PendingApproval("Account pending approval.")
    return user


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db)
) -> Optional[User]:
    """Like get_current_user, but anonymous instead of failing."""
    if credentials is None:
        return None
    try:
        return await get_current_user(credentials, db)
    except (Unauthenticated, PendingApproval):
        return None


def require_roles(*roles: str):
    """Dependency factory: caller's role must be one of `roles`."""
    allowed = {parse_role(role).value for role in roles}

    async def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise Forbidden(f"Access denied. Required roles: {', '.join(sorted(allowed))}")
        return user

    return dependency


def require_permissions(*permissions: str):
    """Dependency factory: caller must hold at least one of `permissions`."""
    wanted = [Permission(p).value for p in permissions]

    async def dependency(user: User = Depends(get_current_user)) -> User:
        if not any(user.has_permission(p) for p in wanted):
            raise Forbidden(f"Access denied. Required permissions: {', '.join(wanted)}")
        return user

    return dependency


def has_state_access(user: User, state: Optional[str]) -> bool:
    if not state:
        return True
    if user.role == Role.SUPER_ADMIN.value or user.state == ALL_STATES:
        return True
    return state == user.state


def ensure_state_access(user: User, state: Optional[str], message: Optional[str] = None) -> None:
    if not has_state_access(user, state):
        raise Forbidden(message or "Access denied. You can only access data from your assigned state.")


@dataclass(frozen=True)
class TrainingScope:
    """Row-level filter for list-style training queries."""
    state: Optional[str] = None
    organizer_id: Optional[int] = None
    read_only: bool = False

    @classmethod
    def for_user(cls, user: Optional[User]) -> "TrainingScope":
        if user is None:
            return cls()
        role = user.role
        if role == Role.ADMIN.value and not user.has_permission(Permission.VIEW_ALL_STATES.value):
            if user.state and user.state != ALL_STATES:
                return cls(state=user.state)
            return cls()
        if role in (Role.ATI.value, Role.NGO.value):
            return cls(organizer_id=user.id)
        if role == Role.VOLUNTEER.value:
            return cls(read_only=True)
        return cls()

    def apply(self, query):
        if self.state is not None:
            query = query.where(Training.state == self.state)
        if self.organizer_id is not None:
            query = query.where(Training.organizer_id == self.organizer_id)
        return query


async def get_training_scope(user: User = Depends(get_current_user)) -> TrainingScope:
    return TrainingScope.for_user(user)


def get_hub(request: Request):
    """The NotificationHub attached to the application at startup."""
    return request.app.state.hub
