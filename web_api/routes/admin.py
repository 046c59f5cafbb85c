"""
Admin moderation API routes.

All endpoints require an admin; the check runs in core.moderation inside
the same transaction as the change.

Endpoints:
- GET /api/admin/users - All users
- POST /api/admin/users/{user_id}/ban - Ban a user (optionally for N hours)
- POST /api/admin/users/{user_id}/unban - Lift a ban
- PATCH /api/admin/users/{user_id}/role - Change a user's role
- POST /api/admin/bans/sweep - Clear every expired ban now
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from core.database import get_connection, get_transaction
from core.enums import UserRole
from core.errors import BeBusyError
from core.moderation import (
    ban_user,
    check_expired_bans,
    get_all_users,
    require_admin,
    unban_user,
    update_user_role,
)
from web_api.auth import get_current_user_id
from web_api.errors import to_http_exception

router = APIRouter(prefix="/api/admin", tags=["admin"])


class BanRequest(BaseModel):
    """Request body for banning a user. No duration means permanent."""

    reason: str | None = None
    duration_hours: float | None = Field(default=None, gt=0)


class RoleRequest(BaseModel):
    role: UserRole


@router.get("/users")
async def list_users(admin_id: UUID = Depends(get_current_user_id)) -> dict[str, Any]:
    try:
        async with get_connection() as conn:
            users = await get_all_users(conn, admin_id)
    except BeBusyError as e:
        raise to_http_exception(e)
    return {"users": users}


@router.post("/users/{user_id}/ban")
async def ban_endpoint(
    user_id: UUID,
    request: BanRequest,
    admin_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    try:
        async with get_transaction() as conn:
            profile = await ban_user(
                conn, admin_id, user_id, request.reason, request.duration_hours
            )
    except BeBusyError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"user": profile}


@router.post("/users/{user_id}/unban")
async def unban_endpoint(
    user_id: UUID,
    admin_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    try:
        async with get_transaction() as conn:
            profile = await unban_user(conn, admin_id, user_id)
    except BeBusyError as e:
        raise to_http_exception(e)
    return {"user": profile}


@router.patch("/users/{user_id}/role")
async def role_endpoint(
    user_id: UUID,
    request: RoleRequest,
    admin_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    try:
        async with get_transaction() as conn:
            profile = await update_user_role(conn, admin_id, user_id, request.role)
    except BeBusyError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"user": profile}


@router.post("/bans/sweep")
async def sweep_endpoint(
    admin_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    try:
        async with get_transaction() as conn:
            await require_admin(conn, admin_id)
            unbanned = await check_expired_bans(conn)
    except BeBusyError as e:
        raise to_http_exception(e)
    return {"unbanned": [str(u) for u in unbanned]}
