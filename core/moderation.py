"""
Admin moderation: bans, unbans and role changes.

Expired timed bans are cleared two ways: lazily by core.roles.resolve_role
for the acting user, and in bulk by check_expired_bans(), which the
scheduler runs periodically.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncConnection

from .enums import UserRole
from .errors import NotFoundError, PermissionDeniedError
from .roles import resolve_role
from .tables import profiles

logger = logging.getLogger(__name__)

_PROFILE_COLUMNS = (
    profiles.c.id,
    profiles.c.username,
    profiles.c.role,
    profiles.c.bio,
    profiles.c.banned_until,
)


async def require_admin(conn: AsyncConnection, user_id: UUID | None) -> None:
    role_info = await resolve_role(conn, user_id)
    if role_info.role != UserRole.admin:
        raise PermissionDeniedError("Admin access required")


def ban_reason_bio(reason: str | None) -> str:
    return f"[BANNED] {reason}" if reason else "[BANNED]"


async def _update_profile(
    conn: AsyncConnection,
    target_user_id: UUID,
    values: dict[str, Any],
) -> dict[str, Any]:
    result = await conn.execute(
        update(profiles)
        .where(profiles.c.id == target_user_id)
        .values(**values, updated_at=datetime.now(timezone.utc))
        .returning(*_PROFILE_COLUMNS)
    )
    row = result.mappings().first()
    if not row:
        raise NotFoundError("User not found")
    return dict(row)


async def get_all_users(
    conn: AsyncConnection,
    admin_id: UUID | None,
) -> list[dict[str, Any]]:
    """Every profile, newest first (admin only)."""
    await require_admin(conn, admin_id)

    result = await conn.execute(select(profiles).order_by(profiles.c.created_at.desc()))
    return [dict(row) for row in result.mappings()]


async def ban_user(
    conn: AsyncConnection,
    admin_id: UUID | None,
    target_user_id: UUID,
    reason: str | None = None,
    duration_hours: float | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Ban a user. Without a duration the ban is permanent.

    Raises:
        PermissionDeniedError: Acting user is not an admin, or bans themselves
        NotFoundError: Target profile does not exist
    """
    await require_admin(conn, admin_id)
    if admin_id == target_user_id:
        raise PermissionDeniedError("You cannot ban yourself")
    if duration_hours is not None and duration_hours <= 0:
        raise ValueError("Ban duration must be positive")

    banned_until = None
    if duration_hours:
        banned_until = (now or datetime.now(timezone.utc)) + timedelta(hours=duration_hours)

    profile = await _update_profile(
        conn,
        target_user_id,
        {
            "role": UserRole.banned,
            "bio": ban_reason_bio(reason),
            "banned_until": banned_until,
        },
    )
    logger.info(
        f"Admin {admin_id} banned user {target_user_id} "
        f"until {banned_until.isoformat() if banned_until else 'forever'}"
    )
    return profile


async def unban_user(
    conn: AsyncConnection,
    admin_id: UUID | None,
    target_user_id: UUID,
) -> dict[str, Any]:
    await require_admin(conn, admin_id)
    profile = await _update_profile(
        conn,
        target_user_id,
        {"role": UserRole.user, "bio": None, "banned_until": None},
    )
    logger.info(f"Admin {admin_id} unbanned user {target_user_id}")
    return profile


async def update_user_role(
    conn: AsyncConnection,
    admin_id: UUID | None,
    target_user_id: UUID,
    role: UserRole | str,
) -> dict[str, Any]:
    """
    Change a user's role. Banning goes through ban_user() instead, so the
    ban metadata is always written.
    """
    await require_admin(conn, admin_id)
    try:
        role = UserRole(role)
    except ValueError:
        raise ValueError(f"Unknown role: {role}")
    if role == UserRole.banned:
        raise ValueError("Use the ban endpoint to ban a user")

    profile = await _update_profile(
        conn,
        target_user_id,
        {"role": role, "banned_until": None},
    )
    logger.info(f"Admin {admin_id} set role of {target_user_id} to {role.value}")
    return profile


async def check_expired_bans(
    conn: AsyncConnection,
    now: datetime | None = None,
) -> list[UUID]:
    """
    Clear every timed ban whose expiry has passed.

    Permanent bans (no banned_until) are untouched.

    Returns:
        Ids of the users that were unbanned
    """
    now = now or datetime.now(timezone.utc)
    result = await conn.execute(
        update(profiles)
        .where(profiles.c.role == UserRole.banned)
        .where(profiles.c.banned_until.is_not(None))
        .where(profiles.c.banned_until <= now)
        .values(role=UserRole.user, bio=None, banned_until=None, updated_at=now)
        .returning(profiles.c.id)
    )
    unbanned = list(result.scalars().all())
    if unbanned:
        logger.info(f"Cleared {len(unbanned)} expired ban(s)")
    return unbanned
