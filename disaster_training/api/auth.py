"""
Auth API endpoints.

Account registration, login, profile and user administration.

=============================================================================
ROLES & APPROVAL
=============================================================================

Roles (highest first): SuperAdmin > Admin > ATI > NGO > Volunteer

- Volunteer accounts are active immediately
- Admin / ATI / NGO accounts must be approved before they can sign in
- SuperAdmin accounts cannot be self-registered
- An approver needs canManageUsers and must outrank the account; a state
  Admin only sees and approves accounts of their own state

Endpoints:
- POST /auth/register: Create an account
- POST /auth/login: Exchange credentials for a token
- GET /auth/me: Current user
- PUT /auth/profile: Update own profile
- PUT /auth/change-password: Change own password
- GET /auth/users: List users (canManageUsers)
- GET /auth/pending-users: Approval queue (canManageUsers)
- PUT /auth/approve-user/{user_id}: Approve or reject (canManageUsers)
- PUT /auth/users/{user_id}: Change role/state/active (SuperAdmin)
- GET /auth/user-stats: Counts by role (canManageUsers)
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import logging

from disaster_training.database import get_db
from disaster_training.dependencies import get_current_user, require_permissions, require_roles
from disaster_training.models.database_models import User
from disaster_training.models.roles import Permission, Role
from disaster_training.services.auth_service import AuthService
from disaster_training.schemas.schemas import (
    AdminUserUpdateRequest,
    ApproveUserRequest,
    ChangePasswordRequest,
    LoginRequest,
    ProfileUpdateRequest,
    UserRegisterRequest,
    envelope,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Auth"])

manage_users = require_permissions(Permission.MANAGE_USERS.value)


@router.post(
    "/register",
    status_code=201,
    summary="Register Account",
    description="""
    Create an account. Volunteers can sign in straight away; Admin, ATI and
    NGO accounts need a state and wait for approval.
    """
)
async def register(
    request: UserRegisterRequest,
    db: AsyncSession = Depends(get_db)
):
    result = await AuthService.register(db, request)
    user = result["user"]
    message = "User registered successfully"
    if not user["isApproved"]:
        message += ". Your account is pending approval."
    return envelope(result, message=message)


@router.post(
    "/login",
    summary="Login",
    description="Exchange email and password for a bearer token."
)
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db)
):
    result = await AuthService.login(db, request.email, request.password)
    return envelope(result, message="Login successful")


@router.get("/me", summary="Current User")
async def get_me(user: User = Depends(get_current_user)):
    return envelope(user.to_dict())


@router.put("/profile", summary="Update Profile")
async def update_profile(
    request: ProfileUpdateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    user = await AuthService.update_profile(db, user, request)
    return envelope(user.to_dict(), message="Profile updated successfully")


@router.put("/change-password", summary="Change Password")
async def change_password(
    request: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    await AuthService.change_password(db, user, request)
    return envelope(message="Password changed successfully")


@router.get(
    "/users",
    summary="List Users",
    description="""
    Paginated user list with optional role, state and status filters.
    State Admins only see their own state.

    status: pending | approved | active | inactive
    """
)
async def list_users(
    role: Optional[Role] = Query(None),
    state: Optional[str] = Query(None),
    status: Optional[str] = Query(None, pattern="^(pending|approved|active|inactive)$"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(manage_users),
    db: AsyncSession = Depends(get_db)
):
    result = await AuthService.list_users(
        db, user,
        role=role.value if role else None,
        state=state,
        status=status,
        page=page,
        limit=limit,
    )
    return envelope(result)


@router.get("/pending-users", summary="Pending Approvals")
async def pending_users(
    user: User = Depends(manage_users),
    db: AsyncSession = Depends(get_db)
):
    users = await AuthService.pending_users(db, user)
    return envelope([u.to_dict() for u in users], count=len(users))


@router.put(
    "/approve-user/{user_id}",
    summary="Approve or Reject User",
    description="Rejecting deactivates the account and stores the reason."
)
async def approve_user(
    user_id: int,
    request: ApproveUserRequest,
    approver: User = Depends(manage_users),
    db: AsyncSession = Depends(get_db)
):
    result = await AuthService.approve_user(db, approver, user_id, request.approve, request.reason)
    verb = "approved" if request.approve else "rejected"
    return envelope(result, message=f"User {verb} successfully")


@router.put(
    "/users/{user_id}",
    summary="Update User",
    description="SuperAdmin only. A role change recomputes the permission set."
)
async def update_user(
    user_id: int,
    request: AdminUserUpdateRequest,
    caller: User = Depends(require_roles(Role.SUPER_ADMIN.value)),
    db: AsyncSession = Depends(get_db)
):
    user = await AuthService.update_user(db, caller, user_id, request)
    return envelope(user.to_dict(), message="User updated successfully")


@router.get("/user-stats", summary="User Statistics")
async def user_stats(
    user: User = Depends(manage_users),
    db: AsyncSession = Depends(get_db)
):
    return envelope(await AuthService.user_stats(db))
