"""
Daily check-in routes.

Endpoints:
- GET /api/check-ins/today - Today's check-in (or null)
- GET /api/check-ins - Check-in history
- POST /api/check-ins - Create today's check-in
- POST /api/check-ins/{id}/complete - Mark a check-in completed
- GET /api/check-ins/streak - Current user's streak
- GET /api/check-ins/leaderboard - Top streaks
- GET /api/check-ins/groups/{group_id} - Today's check-ins in a group
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

from core.checkins import (
    complete_check_in,
    create_check_in,
    get_group_check_ins,
    get_streak_leaderboard,
    get_today_check_in,
    get_user_check_ins,
    get_user_streak,
)
from core.database import get_connection, get_transaction
from core.errors import BeBusyError
from core.realtime import checkin_broadcaster
from web_api.auth import get_current_user_id
from web_api.errors import to_http_exception

router = APIRouter(prefix="/api/check-ins", tags=["check-ins"])


class CreateCheckInRequest(BaseModel):
    """Schema for a daily check-in."""

    today_goal: str
    yesterday_completed: str | None = None
    group_id: UUID | None = None


@router.get("/today")
async def get_today(user_id: UUID = Depends(get_current_user_id)) -> dict[str, Any]:
    async with get_connection() as conn:
        check_in = await get_today_check_in(conn, user_id)
    return {"check_in": check_in}


@router.get("")
async def get_history(
    limit: int = Query(30, ge=1, le=365),
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    async with get_connection() as conn:
        check_ins = await get_user_check_ins(conn, user_id, limit)
    return {"check_ins": check_ins}


@router.post("", status_code=201)
async def create_endpoint(
    request: CreateCheckInRequest,
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    """Create today's check-in and notify the user's open sessions."""
    try:
        async with get_transaction() as conn:
            check_in = await create_check_in(
                conn,
                user_id,
                request.today_goal,
                request.yesterday_completed,
                request.group_id,
            )
            streak = await get_user_streak(conn, user_id)
    except BeBusyError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise HTTPException(400, str(e))

    checkin_broadcaster.publish(
        user_id, {"type": "check_in", "record": jsonable_encoder(check_in)}
    )
    return {"check_in": check_in, "streak": streak}


@router.post("/{check_in_id}/complete")
async def complete_endpoint(
    check_in_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    try:
        async with get_transaction() as conn:
            check_in = await complete_check_in(conn, user_id, check_in_id)
    except BeBusyError as e:
        raise to_http_exception(e)
    return {"check_in": check_in}


@router.get("/streak")
async def get_streak(user_id: UUID = Depends(get_current_user_id)) -> dict[str, Any]:
    async with get_transaction() as conn:
        streak = await get_user_streak(conn, user_id)
    return {"streak": streak}


@router.get("/leaderboard")
async def get_leaderboard(limit: int = Query(10, ge=1, le=100)) -> dict[str, Any]:
    async with get_connection() as conn:
        leaderboard = await get_streak_leaderboard(conn, limit)
    return {"leaderboard": leaderboard}


@router.get("/groups/{group_id}")
async def get_group_endpoint(
    group_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    """Today's check-ins in one of the user's groups."""
    try:
        async with get_connection() as conn:
            check_ins = await get_group_check_ins(conn, user_id, group_id)
    except BeBusyError as e:
        raise to_http_exception(e)
    return {"check_ins": check_ins}
