"""
Profile/role resolution for the acting user.

Every workflow that needs to know who is acting goes through
resolve_role(). Expired bans are cleared lazily here, in a transaction of
their own, so the clear sticks even when the caller's action then fails.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncConnection

from .database import get_transaction
from .enums import STAFF_ROLES, UserRole
from .errors import NotAuthenticatedError
from .tables import profiles

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleInfo:
    """Resolved role of a user plus the ban expiry, if any."""

    user_id: UUID
    role: UserRole
    banned_until: datetime | None = None
    ban_cleared: bool = False

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_banned(self) -> bool:
        return self.role == UserRole.banned

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "banned_until": self.banned_until.isoformat() if self.banned_until else None,
        }


def parse_role(raw: Any) -> UserRole:
    """Map a stored role value to UserRole. Missing or unknown values mean 'user'."""
    if raw is None:
        return UserRole.user
    if isinstance(raw, UserRole):
        return raw
    try:
        return UserRole(str(raw))
    except ValueError:
        logger.warning(f"Unknown role {raw!r}, treating as user")
        return UserRole.user


def ban_has_expired(banned_until: datetime | None, now: datetime | None = None) -> bool:
    """
    True when a timed ban is over.

    A ban without an expiry is permanent and never expires lazily.
    """
    if banned_until is None:
        return False
    now = now or datetime.now(timezone.utc)
    if banned_until.tzinfo is None:
        banned_until = banned_until.replace(tzinfo=timezone.utc)
    return banned_until < now


async def clear_ban(conn: AsyncConnection, user_id: UUID) -> None:
    """Reset a banned profile back to a regular user."""
    await conn.execute(
        update(profiles)
        .where(profiles.c.id == user_id)
        .where(profiles.c.role == UserRole.banned)
        .values(
            role=UserRole.user,
            bio=None,
            banned_until=None,
            updated_at=datetime.now(timezone.utc),
        )
    )


async def resolve_role(
    conn: AsyncConnection,
    user_id: UUID | None,
    now: datetime | None = None,
) -> RoleInfo:
    """
    Resolve the acting user's role.

    Args:
        user_id: Authenticated user id (JWT "sub"), or None without a session
        now: Clock override for tests

    Returns:
        RoleInfo. If the user was banned and the ban expired, the ban is
        cleared and committed on a separate connection first, and the
        returned role is 'user'.

    Raises:
        NotAuthenticatedError: No identity, or no profile for it
    """
    if user_id is None:
        raise NotAuthenticatedError("User not authenticated")

    result = await conn.execute(
        select(profiles.c.role, profiles.c.banned_until).where(profiles.c.id == user_id)
    )
    row = result.mappings().first()
    if not row:
        raise NotAuthenticatedError("Profile not found")

    role = parse_role(row["role"])
    banned_until = row["banned_until"]

    if role == UserRole.banned and ban_has_expired(banned_until, now):
        logger.info(f"Ban for user {user_id} expired at {banned_until}, auto-unbanning")
        async with get_transaction() as clear_conn:
            await clear_ban(clear_conn, user_id)
        return RoleInfo(user_id=user_id, role=UserRole.user, ban_cleared=True)

    return RoleInfo(user_id=user_id, role=role, banned_until=banned_until)
