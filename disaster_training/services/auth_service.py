"""
Auth Service for account registration, login and user administration.

Approval workflow:
==============================================================================
- Volunteer and SuperAdmin accounts are usable immediately
- Admin / ATI / NGO accounts wait for an approver who holds canManageUsers,
  strictly outranks them and (for state Admins) shares their state
- Rejection deactivates the account and records the reason
"""
from typing import Optional, List, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_, case, true
import logging
import math

from disaster_training.models.database_models import User
from disaster_training.models.roles import (
    ALL_STATES, Role, STATE_REQUIRED_ROLES, can_manage,
)
from disaster_training.exceptions import (
    Conflict, Forbidden, NotFound, PendingApproval, Unauthenticated, ValidationError,
)
from disaster_training.schemas.schemas import (
    AdminUserUpdateRequest, ChangePasswordRequest, ProfileUpdateRequest, UserRegisterRequest,
)
from disaster_training.security import create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)


def _is_state_admin(user: User) -> bool:
    return user.role == Role.ADMIN.value and user.state != ALL_STATES


class AuthService:
    """Service for accounts and their approval workflow."""

    USER_STATUS_FILTERS = ("pending", "approved", "active", "inactive")

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_user(db: AsyncSession, user_id: int) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    @staticmethod
    async def register(db: AsyncSession, request: UserRegisterRequest) -> Dict[str, Any]:
        """
        Create an account. Privileged roles are created unapproved.

        Returns {"user": ..., "token": ...}.
        """
        if request.role == Role.SUPER_ADMIN:
            raise Forbidden("SuperAdmin accounts cannot be self-registered")

        if await AuthService.get_by_email(db, request.email):
            raise Conflict("User with this email already exists")

        user = User.create_with_role(
            name=request.name,
            email=request.email,
            password_hash=hash_password(request.password),
            role=request.role.value,
            state=request.state,
            organization=request.organization,
            phone=request.phone,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)

        logger.info(f"Registered user {user.id} ({user.role}, approved={user.is_approved})")
        return {"user": user.to_dict(), "token": create_access_token(user.id)}

    @staticmethod
    async def login(db: AsyncSession, email: str, password: str) -> Dict[str, Any]:
        user = await AuthService.get_by_email(db, email)
        if user is None or not verify_password(password, user.password_hash):
            logger.info("Failed login attempt")
            raise Unauthenticated("Invalid credentials")
        if not user.is_active:
            raise Unauthenticated("Account is deactivated. Please contact administrator.")
        if not user.is_approved and user.requires_approval:
            raise PendingApproval("Account is pending approval. Please wait for administrator approval.")

        logger.info(f"User {user.id} logged in")
        return {"user": user.to_dict(), "token": create_access_token(user.id)}

    @staticmethod
    async def update_profile(db: AsyncSession, user: User, request: ProfileUpdateRequest) -> User:
        changes = request.model_dump(exclude_unset=True, exclude_none=True)
        for field, value in changes.items():
            setattr(user, field, value.strip() if isinstance(value, str) else value)
        await db.commit()
        await db.refresh(user)
        return user

    @staticmethod
    async def change_password(db: AsyncSession, user: User, request: ChangePasswordRequest) -> None:
        if not verify_password(request.current_password, user.password_hash):
            raise Unauthenticated("Current password is incorrect")
        user.password_hash = hash_password(request.new_password)
        await db.commit()
        logger.info(f"User {user.id} changed password")

    @staticmethod
    async def pending_users(db: AsyncSession, approver: User) -> List[User]:
        """Unapproved, still-active accounts the approver could act on."""
        query = select(User).where(
            and_(
                User.is_approved == False,
                User.is_active == True,
                User.role.in_([r.value for r in STATE_REQUIRED_ROLES]),
            )
        )
        if _is_state_admin(approver):
            query = query.where(User.state == approver.state)
        query = query.order_by(User.created_at.desc())

        result = await db.execute(query)
        return [
            u for u in result.scalars().all()
            if can_manage(approver.role, approver.permissions, u.role)
        ]

    @staticmethod
    async def approve_user(
        db: AsyncSession,
        approver: User,
        user_id: int,
        approve: bool,
        reason: Optional[str] = None
    ) -> Dict[str, Any]:
        user = await AuthService.get_user(db, user_id)

        if not can_manage(approver.role, approver.permissions, user.role):
            raise Forbidden(f"You cannot manage users with role {user.role}")
        if _is_state_admin(approver) and user.state != approver.state:
            raise Forbidden("You can only approve users from your assigned state")

        user.is_approved = approve
        user.approved_by_id = approver.id
        if approve:
            user.is_active = True
            user.rejection_reason = None
        else:
            user.is_active = False
            user.rejection_reason = reason
        await db.commit()

        logger.info(f"User {user.id} {'approved' if approve else 'rejected'} by {approver.id}")
        return {"userId": user.id, "approved": user.is_approved, "approvedBy": approver.id}

    @staticmethod
    async def list_users(
        db: AsyncSession,
        caller: User,
        role: Optional[str] = None,
        state: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10
    ) -> Dict[str, Any]:
        conditions = []
        if role:
            conditions.append(User.role == role)
        if _is_state_admin(caller):
            conditions.append(User.state == caller.state)
        elif state:
            conditions.append(User.state == state)

        if status == "pending":
            conditions.append(User.is_approved == False)
        elif status == "approved":
            conditions.append(User.is_approved == True)
        elif status == "active":
            conditions.append(User.is_active == True)
        elif status == "inactive":
            conditions.append(User.is_active == False)

        where = and_(*conditions) if conditions else true()
        total = (await db.execute(select(func.count(User.id)).where(where))).scalar() or 0

        result = await db.execute(
            select(User)
            .where(where)
            .order_by(User.created_at.desc(), User.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        users = result.scalars().all()
        total_pages = math.ceil(total / limit) if limit else 0

        return {
            "users": [u.to_dict() for u in users],
            "pagination": {
                "currentPage": page,
                "totalPages": total_pages,
                "totalUsers": total,
                "hasNext": page < total_pages,
                "hasPrev": page > 1,
            },
        }

    @staticmethod
    async def update_user(
        db: AsyncSession,
        caller: User,
        user_id: int,
        request: AdminUserUpdateRequest
    ) -> User:
        """SuperAdmin update; a role change recomputes the permission set."""
        user = await AuthService.get_user(db, user_id)

        if user.id == caller.id:
            if request.role is not None and request.role != Role.SUPER_ADMIN:
                raise ValidationError("You cannot demote your own account")
            if request.is_active is False:
                raise ValidationError("You cannot deactivate your own account")
        elif not can_manage(caller.role, caller.permissions, user.role):
            raise Forbidden("You can only manage users with a lower role than yours")

        if request.role is not None:
            user.change_role(request.role.value, request.state)
        elif request.state is not None:
            user.change_role(user.role, request.state)

        if request.is_active is not None:
            user.is_active = request.is_active

        await db.commit()
        await db.refresh(user)
        logger.info(f"User {user.id} updated by {caller.id}: role={user.role} state={user.state}")
        return user

    @staticmethod
    async def user_stats(db: AsyncSession) -> Dict[str, Any]:
        by_role_query = select(
            User.role,
            func.count(User.id).label("count"),
            func.sum(case((User.is_approved == True, 1), else_=0)).label("approved"),
            func.sum(case((User.is_active == True, 1), else_=0)).label("active"),
        ).group_by(User.role)
        rows = (await db.execute(by_role_query)).fetchall()

        by_role = {
            row.role: {
                "count": int(row.count or 0),
                "approved": int(row.approved or 0),
                "active": int(row.active or 0),
            }
            for row in rows
        }
        return {
            "total": sum(r["count"] for r in by_role.values()),
            "approved": sum(r["approved"] for r in by_role.values()),
            "active": sum(r["active"] for r in by_role.values()),
            "pending": sum(r["count"] - r["approved"] for r in by_role.values()),
            "byRole": by_role,
        }
