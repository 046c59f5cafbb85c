"""
Daily check-ins and streaks.

One check-in per user per UTC day. Creating a check-in advances the
user's streak.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection

from .errors import BannedError, NotFoundError, PermissionDeniedError
from .roles import resolve_role
from .tables import daily_check_ins, group_members, profiles, user_streaks

logger = logging.getLogger(__name__)


def utc_today(now: datetime | None = None) -> date:
    """Current calendar date in UTC."""
    return (now or datetime.now(timezone.utc)).astimezone(timezone.utc).date()


def next_streak(
    current_streak: int,
    longest_streak: int,
    last_check_in_date: date | None,
    today: date,
) -> tuple[int, int] | None:
    """
    Compute (current, longest) after checking in on `today`.

    Returns None when the user already checked in today (no change).
    A check-in the day after the last one extends the streak; any gap
    restarts it at 1.
    """
    if last_check_in_date == today:
        return None
    if last_check_in_date == today - timedelta(days=1):
        current = current_streak + 1
    else:
        current = 1
    return current, max(longest_streak, current)


async def get_today_check_in(
    conn: AsyncConnection,
    user_id: UUID,
    today: date | None = None,
) -> dict[str, Any] | None:
    """Get the user's check-in for today, if any."""
    today = today or utc_today()
    result = await conn.execute(
        select(daily_check_ins)
        .where(daily_check_ins.c.user_id == user_id)
        .where(daily_check_ins.c.date == today)
    )
    row = result.mappings().first()
    return dict(row) if row else None


async def get_user_streak(conn: AsyncConnection, user_id: UUID) -> dict[str, Any]:
    """Get the user's streak row, creating an empty one on first use."""
    result = await conn.execute(
        select(user_streaks).where(user_streaks.c.user_id == user_id)
    )
    row = result.mappings().first()
    if row:
        return dict(row)

    result = await conn.execute(
        insert(user_streaks)
        .values(user_id=user_id, current_streak=0, longest_streak=0)
        .returning(user_streaks)
    )
    return dict(result.mappings().first())


async def update_streak(
    conn: AsyncConnection,
    user_id: UUID,
    today: date | None = None,
) -> dict[str, Any]:
    """Advance the user's streak for a check-in made today."""
    today = today or utc_today()
    streak = await get_user_streak(conn, user_id)

    advanced = next_streak(
        streak["current_streak"],
        streak["longest_streak"],
        streak["last_check_in_date"],
        today,
    )
    if advanced is None:
        return streak

    current, longest = advanced
    result = await conn.execute(
        update(user_streaks)
        .where(user_streaks.c.user_id == user_id)
        .values(
            current_streak=current,
            longest_streak=longest,
            last_check_in_date=today,
            updated_at=datetime.now(timezone.utc),
        )
        .returning(user_streaks)
    )
    return dict(result.mappings().first())


def _translate_check_in_error(exc: IntegrityError) -> Exception:
    # Besides the one-per-day key, the only constraint an insert can hit is
    # the group_id foreign key
    if "daily_check_ins_user_date_unique" in str(exc.orig):
        return ValueError("You have already checked in today")
    return NotFoundError("Group not found")


async def create_check_in(
    conn: AsyncConnection,
    user_id: UUID | None,
    today_goal: str,
    yesterday_completed: str | None = None,
    group_id: UUID | None = None,
    today: date | None = None,
) -> dict[str, Any]:
    """
    Record today's check-in and advance the streak.

    Raises:
        NotAuthenticatedError: No identity
        BannedError: User is banned
        ValueError: Empty goal, or already checked in today
        NotFoundError: group_id does not name a group
    """
    role_info = await resolve_role(conn, user_id)
    if role_info.is_banned:
        raise BannedError("Your account has been banned. You cannot check in.")

    today_goal = (today_goal or "").strip()
    if not today_goal:
        raise ValueError("Today's goal is required")

    today = today or utc_today()
    try:
        result = await conn.execute(
            insert(daily_check_ins)
            .values(
                user_id=user_id,
                group_id=group_id,
                today_goal=today_goal,
                yesterday_completed=yesterday_completed,
                date=today,
                is_completed=False,
            )
            .returning(daily_check_ins)
        )
    except IntegrityError as e:
        raise _translate_check_in_error(e) from e
    check_in = dict(result.mappings().first())

    streak = await update_streak(conn, user_id, today)
    logger.info(
        f"User {user_id} checked in for {today} "
        f"(streak {streak['current_streak']})"
    )
    return check_in


async def complete_check_in(
    conn: AsyncConnection,
    user_id: UUID,
    check_in_id: UUID,
) -> dict[str, Any]:
    """Mark the user's own check-in as completed."""
    result = await conn.execute(
        update(daily_check_ins)
        .where(daily_check_ins.c.id == check_in_id)
        .where(daily_check_ins.c.user_id == user_id)
        .values(is_completed=True)
        .returning(daily_check_ins)
    )
    row = result.mappings().first()
    if not row:
        raise NotFoundError("Check-in not found")
    return dict(row)


async def get_user_check_ins(
    conn: AsyncConnection,
    user_id: UUID,
    limit: int = 30,
) -> list[dict[str, Any]]:
    """The user's check-in history, most recent first."""
    result = await conn.execute(
        select(daily_check_ins)
        .where(daily_check_ins.c.user_id == user_id)
        .order_by(daily_check_ins.c.date.desc())
        .limit(limit)
    )
    return [dict(row) for row in result.mappings()]


async def get_streak_leaderboard(
    conn: AsyncConnection,
    limit: int = 10,
) -> list[dict[str, Any]]:
    """Top current streaks with basic profile info."""
    result = await conn.execute(
        select(
            user_streaks.c.user_id,
            user_streaks.c.current_streak,
            user_streaks.c.longest_streak,
            user_streaks.c.last_check_in_date,
            profiles.c.username,
            profiles.c.full_name,
            profiles.c.avatar_url,
        )
        .join(profiles, profiles.c.id == user_streaks.c.user_id)
        .order_by(user_streaks.c.current_streak.desc())
        .limit(limit)
    )
    return [dict(row) for row in result.mappings()]


async def get_group_check_ins(
    conn: AsyncConnection,
    user_id: UUID,
    group_id: UUID,
    today: date | None = None,
) -> list[dict[str, Any]]:
    """
    Today's check-ins posted to a group, newest first, with profile info.

    Only members of the group can see them.

    Raises:
        PermissionDeniedError: User is not in the group
    """
    result = await conn.execute(
        select(group_members.c.id)
        .where(group_members.c.group_id == group_id)
        .where(group_members.c.user_id == user_id)
    )
    if result.first() is None:
        raise PermissionDeniedError("You are not a member of this group")

    today = today or utc_today()
    result = await conn.execute(
        select(
            daily_check_ins,
            profiles.c.username,
            profiles.c.full_name,
            profiles.c.avatar_url,
        )
        .join(profiles, profiles.c.id == daily_check_ins.c.user_id)
        .where(daily_check_ins.c.group_id == group_id)
        .where(daily_check_ins.c.date == today)
        .order_by(daily_check_ins.c.created_at.desc())
    )
    return [dict(row) for row in result.mappings()]
