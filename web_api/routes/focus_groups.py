"""
Focus group routes.

Endpoints:
- GET /api/focus-groups - All focus groups
- GET /api/focus-groups/mine - Focus groups the user belongs to
- GET /api/focus-groups/mentoring - Focus groups the user mentors
- GET /api/focus-groups/{id} - One focus group
- GET /api/focus-groups/{id}/membership - Membership status of the current user
- POST /api/focus-groups/{id}/apply - Apply (active or waitlist)
- POST /api/focus-groups/{id}/leave - Leave (idempotent)
- POST /api/focus-groups - Create (mentor/admin)
- PATCH /api/focus-groups/{id} - Update (owning mentor or admin)
- DELETE /api/focus-groups/{id} - Delete (owning mentor or admin)
"""

from datetime import date
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from core.database import get_connection, get_transaction
from core.errors import BeBusyError
from core.focus_groups import (
    apply_to_focus_group,
    create_focus_group,
    delete_focus_group,
    get_focus_group,
    get_membership_status,
    get_mentor_focus_groups,
    get_user_focus_groups,
    leave_focus_group,
    list_focus_groups,
    update_focus_group,
)
from web_api.auth import get_current_user_id, get_optional_user_id
from web_api.errors import to_http_exception

router = APIRouter(prefix="/api/focus-groups", tags=["focus-groups"])


class CreateFocusGroupRequest(BaseModel):
    """Schema for creating a focus group."""

    title: str = Field(min_length=1)
    description: str
    mentor_name: str
    mentor_role: str
    total_spots: int = Field(gt=0)
    start_date: date | None = None
    end_date: date | None = None
    tags: list[str] | None = None


class UpdateFocusGroupRequest(BaseModel):
    """Schema for updating a focus group. Only set fields are changed."""

    title: str | None = None
    description: str | None = None
    mentor_name: str | None = None
    mentor_role: str | None = None
    mentor_image_url: str | None = None
    total_spots: int | None = Field(default=None, gt=0)
    start_date: date | None = None
    end_date: date | None = None
    tags: list[str] | None = None


@router.get("")
async def get_focus_groups() -> dict[str, Any]:
    async with get_connection() as conn:
        focus_groups = await list_focus_groups(conn)
    return {"focus_groups": focus_groups}


@router.get("/mine")
async def get_my_focus_groups(
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    async with get_connection() as conn:
        focus_groups = await get_user_focus_groups(conn, user_id)
    return {"focus_groups": focus_groups}


@router.get("/mentoring")
async def get_mentoring_focus_groups(
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    async with get_connection() as conn:
        focus_groups = await get_mentor_focus_groups(conn, user_id)
    return {"focus_groups": focus_groups}


@router.get("/{focus_group_id}")
async def get_focus_group_endpoint(focus_group_id: UUID) -> dict[str, Any]:
    async with get_connection() as conn:
        focus_group = await get_focus_group(conn, focus_group_id)
    if not focus_group:
        raise HTTPException(404, "Focus group not found")
    return focus_group


@router.get("/{focus_group_id}/membership")
async def get_membership(
    focus_group_id: UUID,
    user_id: UUID | None = Depends(get_optional_user_id),
) -> dict[str, Any]:
    """Membership status; anonymous callers are never members."""
    async with get_connection() as conn:
        return await get_membership_status(conn, user_id, focus_group_id)


@router.post("/{focus_group_id}/apply")
async def apply_endpoint(
    focus_group_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    """
    Apply to a focus group.

    Returns {"status": "active" | "waitlist"}. 409 if already a member or if
    the last spot was taken concurrently (message from the database).
    """
    try:
        async with get_transaction() as conn:
            status = await apply_to_focus_group(conn, user_id, focus_group_id)
    except BeBusyError as e:
        raise to_http_exception(e)
    return {"status": status.value}


@router.post("/{focus_group_id}/leave")
async def leave_endpoint(
    focus_group_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    try:
        async with get_transaction() as conn:
            await leave_focus_group(conn, user_id, focus_group_id)
    except BeBusyError as e:
        raise to_http_exception(e)
    return {"status": "left"}


@router.post("", status_code=201)
async def create_endpoint(
    request: CreateFocusGroupRequest,
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    try:
        async with get_transaction() as conn:
            return await create_focus_group(conn, user_id, **request.model_dump())
    except BeBusyError as e:
        raise to_http_exception(e)


@router.patch("/{focus_group_id}")
async def update_endpoint(
    focus_group_id: UUID,
    request: UpdateFocusGroupRequest,
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    try:
        async with get_transaction() as conn:
            return await update_focus_group(
                conn, user_id, focus_group_id, **request.model_dump(exclude_unset=True)
            )
    except BeBusyError as e:
        raise to_http_exception(e)


@router.delete("/{focus_group_id}")
async def delete_endpoint(
    focus_group_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    try:
        async with get_transaction() as conn:
            await delete_focus_group(conn, user_id, focus_group_id)
    except BeBusyError as e:
        raise to_http_exception(e)
    return {"status": "deleted"}
