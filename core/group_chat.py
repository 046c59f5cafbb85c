"""
Group-chat binding: mirror focus-group membership into the bound discussion group.

Both operations are idempotent. Callers treat failures as soft (see
core/focus_groups.py).
"""

from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncConnection

from .enums import GroupMemberRole
from .tables import group_members


async def bind_member(
    conn: AsyncConnection,
    group_id: UUID,
    user_id: UUID,
    role: GroupMemberRole = GroupMemberRole.member,
) -> None:
    """Add a user to a group chat. Existing membership is left untouched."""
    await conn.execute(
        pg_insert(group_members)
        .values(group_id=group_id, user_id=user_id, role=role)
        .on_conflict_do_nothing(index_elements=["group_id", "user_id"])
    )


async def unbind_member(
    conn: AsyncConnection,
    group_id: UUID,
    user_id: UUID,
) -> int:
    """Remove a user from a group chat. Returns rows removed (0 if not a member)."""
    result = await conn.execute(
        delete(group_members)
        .where(group_members.c.group_id == group_id)
        .where(group_members.c.user_id == user_id)
    )
    return result.rowcount
