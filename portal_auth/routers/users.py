from fastapi import APIRouter, Depends, HTTPException, Query, status

from portal_auth.context import AppContext
from portal_auth.routers.deps import get_context, get_current_principal, require
from portal_auth.schemas.users import (
    AccountStatusUpdate,
    AuditLogResponse,
    MembershipUpdate,
    RoleAssignment,
    UserResponse,
)
from portal_auth.services.authorization import (
    Principal,
    has_active_membership,
    has_role,
    is_user,
)
from portal_auth.services.users import UserNotFoundError

router = APIRouter(prefix="/users", tags=["users"])

is_admin = has_role("admin")
premium_access = has_active_membership("gold") | is_admin


@router.get("", response_model=list[UserResponse])
def list_users(
    _: Principal = Depends(require(is_admin, "Admin access required")),
    context: AppContext = Depends(get_context),
) -> list[UserResponse]:
    return context.users.list_users()


@router.get("/me/audit-log", response_model=list[AuditLogResponse])
def get_my_audit_log(
    limit: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(get_current_principal),
    context: AppContext = Depends(get_context),
) -> list[AuditLogResponse]:
    return context.audit.list_for_user(principal.user.id, limit=limit)


@router.get("/me/premium")
def get_premium_status(
    principal: Principal = Depends(require(premium_access, "Gold membership or admin access required")),
) -> dict:
    return {
        "membershipLevel": principal.user.membership_level,
        "membershipExpires": principal.user.membership_expires,
        "isAdmin": is_admin(principal),
    }


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    principal: Principal = Depends(get_current_principal),
    context: AppContext = Depends(get_context),
) -> UserResponse:
    if not (is_admin | is_user(user_id))(principal):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    user = context.users.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.put("/{user_id}/membership", response_model=UserResponse)
def update_membership(
    user_id: int,
    payload: MembershipUpdate,
    _: Principal = Depends(require(is_admin, "Admin access required")),
    context: AppContext = Depends(get_context),
) -> UserResponse:
    try:
        return context.users.set_membership(
            user_id, payload.membership_level, payload.membership_expires
        )
    except UserNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.post("/{user_id}/roles", response_model=list[str])
def add_role(
    user_id: int,
    payload: RoleAssignment,
    _: Principal = Depends(require(is_admin, "Admin access required")),
    context: AppContext = Depends(get_context),
) -> list[str]:
    try:
        return context.users.add_role(user_id, payload.role)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.put("/{user_id}/status", response_model=UserResponse)
def update_account_status(
    user_id: int,
    payload: AccountStatusUpdate,
    _: Principal = Depends(require(is_admin, "Admin access required")),
    context: AppContext = Depends(get_context),
) -> UserResponse:
    try:
        return context.users.set_active(user_id, payload.is_active)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
