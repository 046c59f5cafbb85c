"""
Focus-group membership and capacity business logic.

All logic for applying to / leaving focus groups lives here. API endpoints
delegate to this module.

Membership states: not a member, active, waitlist. Apply moves a
non-member to active or waitlist; leave moves either back to non-member.
There is no waitlist -> active promotion.

Capacity (available_spots / is_full) is maintained by database triggers.
This module only reads it to route an application; the store itself
rejects an active insert once the last spot is gone, so the routing here
is a hint and the store is the source of truth.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any
from uuid import UUID

import sentry_sdk
from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection

from .enums import STAFF_ROLES, GroupMemberRole, MembershipStatus, UserRole
from .errors import (
    AlreadyMemberError,
    BannedError,
    BeBusyError,
    CapacityRaceError,
    FocusGroupNotFoundError,
    PermissionDeniedError,
)
from .group_chat import bind_member, unbind_member
from .roles import resolve_role
from .tables import focus_group_members, focus_groups, groups

logger = logging.getLogger(__name__)

# Fields a mentor may change on their own focus group
EDITABLE_FIELDS = (
    "title",
    "description",
    "mentor_name",
    "mentor_role",
    "mentor_image_url",
    "total_spots",
    "start_date",
    "end_date",
    "tags",
)


@dataclass(frozen=True)
class FocusGroupCapacity:
    """Capacity snapshot for one focus group."""

    focus_group_id: UUID
    total_spots: int
    available_spots: int
    is_full: bool
    bound_group_id: UUID | None = None


# ============================================================================
# Reads
# ============================================================================


async def list_focus_groups(conn: AsyncConnection) -> list[dict[str, Any]]:
    """All focus groups, newest first."""
    result = await conn.execute(
        select(focus_groups).order_by(focus_groups.c.created_at.desc())
    )
    return [dict(row) for row in result.mappings()]


async def get_focus_group(
    conn: AsyncConnection,
    focus_group_id: UUID,
) -> dict[str, Any] | None:
    """Get a focus group by id."""
    result = await conn.execute(
        select(focus_groups).where(focus_groups.c.id == focus_group_id)
    )
    row = result.mappings().first()
    return dict(row) if row else None


async def get_user_focus_groups(
    conn: AsyncConnection,
    user_id: UUID,
) -> list[dict[str, Any]]:
    """Focus groups the user belongs to, each with a membership_status field."""
    result = await conn.execute(
        select(focus_groups, focus_group_members.c.status.label("membership_status"))
        .join(
            focus_group_members,
            focus_group_members.c.focus_group_id == focus_groups.c.id,
        )
        .where(focus_group_members.c.user_id == user_id)
        .order_by(focus_groups.c.created_at.desc())
    )
    return [dict(row) for row in result.mappings()]


async def get_mentor_focus_groups(
    conn: AsyncConnection,
    user_id: UUID,
) -> list[dict[str, Any]]:
    """Focus groups the user mentors, newest first."""
    result = await conn.execute(
        select(focus_groups)
        .where(focus_groups.c.mentor_id == user_id)
        .order_by(focus_groups.c.created_at.desc())
    )
    return [dict(row) for row in result.mappings()]


async def get_capacity(
    conn: AsyncConnection,
    focus_group_id: UUID,
) -> FocusGroupCapacity:
    """
    Read capacity counters for a focus group.

    Raises:
        FocusGroupNotFoundError: No such focus group
    """
    result = await conn.execute(
        select(
            focus_groups.c.id,
            focus_groups.c.total_spots,
            focus_groups.c.available_spots,
            focus_groups.c.is_full,
            focus_groups.c.group_id,
        ).where(focus_groups.c.id == focus_group_id)
    )
    row = result.mappings().first()
    if not row:
        raise FocusGroupNotFoundError("Focus group not found")

    return FocusGroupCapacity(
        focus_group_id=row["id"],
        total_spots=row["total_spots"],
        available_spots=row["available_spots"],
        is_full=bool(row["is_full"]),
        bound_group_id=row["group_id"],
    )


async def find_membership(
    conn: AsyncConnection,
    user_id: UUID,
    focus_group_id: UUID,
) -> dict[str, Any] | None:
    """Get the membership row for (user, focus group), if any."""
    result = await conn.execute(
        select(focus_group_members)
        .where(focus_group_members.c.focus_group_id == focus_group_id)
        .where(focus_group_members.c.user_id == user_id)
    )
    row = result.mappings().first()
    return dict(row) if row else None


async def get_membership_status(
    conn: AsyncConnection,
    user_id: UUID | None,
    focus_group_id: UUID,
) -> dict[str, Any]:
    """Return {"is_member": bool, "status": "active" | "waitlist" | None}."""
    if user_id is None:
        return {"is_member": False, "status": None}

    membership = await find_membership(conn, user_id, focus_group_id)
    if not membership:
        return {"is_member": False, "status": None}
    return {
        "is_member": True,
        "status": MembershipStatus(membership["status"]).value,
    }


# ============================================================================
# Membership transitions
# ============================================================================


def route_application(role: UserRole, capacity: FocusGroupCapacity) -> MembershipStatus:
    """
    Decide which status a new membership gets.

    Mentors and admins always become active. Everyone else is waitlisted
    once the group is full or out of spots.
    """
    if role in STAFF_ROLES:
        return MembershipStatus.active
    if capacity.is_full or capacity.available_spots <= 0:
        return MembershipStatus.waitlist
    return MembershipStatus.active


def _translate_insert_error(exc: IntegrityError) -> BeBusyError:
    """Map a store-side rejection of a membership insert to a domain error."""
    message = str(exc.orig) if exc.orig is not None else str(exc)
    if "pk_focus_group_members" in message:
        # Lost a race against a concurrent apply by the same user
        return AlreadyMemberError()
    return CapacityRaceError(message)


async def insert_membership(
    conn: AsyncConnection,
    user_id: UUID,
    focus_group_id: UUID,
    status: MembershipStatus,
) -> dict[str, Any]:
    """
    Insert a membership row.

    Raises:
        AlreadyMemberError: Row already exists
        CapacityRaceError: Store rejected the row (capacity trigger)
    """
    try:
        result = await conn.execute(
            insert(focus_group_members)
            .values(focus_group_id=focus_group_id, user_id=user_id, status=status)
            .returning(focus_group_members)
        )
    except IntegrityError as e:
        raise _translate_insert_error(e) from e
    row = result.mappings().first()
    return dict(row)


async def delete_membership(
    conn: AsyncConnection,
    user_id: UUID,
    focus_group_id: UUID,
) -> int:
    """Delete a membership row. Returns rows removed (0 if there was none)."""
    result = await conn.execute(
        delete(focus_group_members)
        .where(focus_group_members.c.focus_group_id == focus_group_id)
        .where(focus_group_members.c.user_id == user_id)
    )
    return result.rowcount


async def _bind_chat_best_effort(
    conn: AsyncConnection,
    group_id: UUID,
    user_id: UUID,
) -> bool:
    """
    Add the user to the bound group chat inside a savepoint.

    A failure rolls back only the savepoint; the focus-group membership
    written before it stays.
    """
    try:
        async with conn.begin_nested():
            await bind_member(conn, group_id, user_id)
        return True
    except Exception as e:
        logger.error(f"Error adding user {user_id} to group chat {group_id}: {e}")
        sentry_sdk.capture_exception(e)
        return False


async def _unbind_chat_best_effort(
    conn: AsyncConnection,
    group_id: UUID,
    user_id: UUID,
) -> bool:
    """Remove the user from the bound group chat inside a savepoint."""
    try:
        async with conn.begin_nested():
            await unbind_member(conn, group_id, user_id)
        return True
    except Exception as e:
        logger.error(f"Error removing user {user_id} from group chat {group_id}: {e}")
        sentry_sdk.capture_exception(e)
        return False


async def apply_to_focus_group(
    conn: AsyncConnection,
    user_id: UUID | None,
    focus_group_id: UUID,
) -> MembershipStatus:
    """
    Apply to join a focus group.

    Steps:
    1. Resolve the applicant's role (expired bans are cleared here)
    2. Reject if a membership row already exists
    3. Read capacity (404 if the focus group does not exist)
    4. Route to active or waitlist (staff bypass capacity)
    5. Insert the membership row
    6. If active and a group chat is bound, add the user to it (best-effort)

    Returns:
        The resulting status (active or waitlist)

    Raises:
        NotAuthenticatedError, BannedError, AlreadyMemberError,
        FocusGroupNotFoundError, CapacityRaceError
    """
    role_info = await resolve_role(conn, user_id)
    if role_info.is_banned:
        raise BannedError("Your account has been banned. You cannot join focus groups.")

    existing = await find_membership(conn, user_id, focus_group_id)
    if existing:
        raise AlreadyMemberError(status=MembershipStatus(existing["status"]))

    capacity = await get_capacity(conn, focus_group_id)
    status = route_application(role_info.role, capacity)

    await insert_membership(conn, user_id, focus_group_id, status)
    logger.info(
        f"User {user_id} applied to focus group {focus_group_id} "
        f"as {role_info.role.value}: {status.value}"
    )

    if status == MembershipStatus.active and capacity.bound_group_id:
        await _bind_chat_best_effort(conn, capacity.bound_group_id, user_id)

    return status


async def leave_focus_group(
    conn: AsyncConnection,
    user_id: UUID | None,
    focus_group_id: UUID,
) -> None:
    """
    Leave a focus group. Idempotent: leaving twice is not an error.

    Any member may leave regardless of role. If the focus group has a bound
    group chat, the user is removed from it as well (best-effort).

    Raises:
        NotAuthenticatedError: No identity
    """
    role_info = await resolve_role(conn, user_id)

    # Read before deleting: the bound group decides whether chat cleanup is needed
    result = await conn.execute(
        select(focus_groups.c.group_id).where(focus_groups.c.id == focus_group_id)
    )
    bound_group_id = result.scalar_one_or_none()
    membership = await find_membership(conn, user_id, focus_group_id)

    removed = await delete_membership(conn, user_id, focus_group_id)
    if removed:
        previous = MembershipStatus(membership["status"]).value if membership else "unknown"
        logger.info(
            f"User {user_id} ({role_info.role.value}) left focus group "
            f"{focus_group_id} (was {previous})"
        )

    if bound_group_id:
        await _unbind_chat_best_effort(conn, bound_group_id, user_id)


# ============================================================================
# Mentor management
# ============================================================================


async def _require_staff(conn: AsyncConnection, user_id: UUID | None):
    role_info = await resolve_role(conn, user_id)
    if not role_info.is_staff:
        raise PermissionDeniedError("Only mentors and admins can manage focus groups")
    return role_info


async def create_focus_group(
    conn: AsyncConnection,
    user_id: UUID | None,
    title: str,
    description: str,
    mentor_name: str,
    mentor_role: str,
    total_spots: int,
    start_date: date | None = None,
    end_date: date | None = None,
    tags: list[str] | None = None,
) -> dict[str, Any]:
    """
    Create a focus group together with its bound group chat.

    The creating mentor is added to the chat as its admin.
    """
    await _require_staff(conn, user_id)

    group_result = await conn.execute(
        insert(groups)
        .values(
            name=f"{title} - Group Chat",
            description=f"Private group chat for {title} focus group members",
            created_by=user_id,
            tags=tags or None,
        )
        .returning(groups.c.id)
    )
    group_id = group_result.scalar_one()

    result = await conn.execute(
        insert(focus_groups)
        .values(
            title=title,
            description=description,
            mentor_id=user_id,
            mentor_name=mentor_name,
            mentor_role=mentor_role,
            total_spots=total_spots,
            available_spots=total_spots,
            is_full=False,
            start_date=start_date,
            end_date=end_date,
            tags=tags or None,
            group_id=group_id,
        )
        .returning(focus_groups)
    )
    row = result.mappings().first()

    await bind_member(conn, group_id, user_id, role=GroupMemberRole.admin)
    logger.info(f"Focus group {row['id']} created by {user_id} with chat {group_id}")
    return dict(row)


async def update_focus_group(
    conn: AsyncConnection,
    user_id: UUID | None,
    focus_group_id: UUID,
    **updates: Any,
) -> dict[str, Any]:
    """
    Update a focus group. Mentors may only edit their own; admins any.

    Unknown fields are ignored. Changing total_spots makes the database
    recompute available_spots / is_full.
    """
    role_info = await _require_staff(conn, user_id)

    values = {k: v for k, v in updates.items() if k in EDITABLE_FIELDS}
    query = update(focus_groups).where(focus_groups.c.id == focus_group_id)
    if role_info.role != UserRole.admin:
        query = query.where(focus_groups.c.mentor_id == user_id)

    if not values:
        existing = await get_focus_group(conn, focus_group_id)
        if not existing or (
            role_info.role != UserRole.admin and existing["mentor_id"] != user_id
        ):
            raise FocusGroupNotFoundError("Focus group not found")
        return existing

    result = await conn.execute(query.values(**values).returning(focus_groups))
    row = result.mappings().first()
    if not row:
        raise FocusGroupNotFoundError("Focus group not found")
    return dict(row)


async def delete_focus_group(
    conn: AsyncConnection,
    user_id: UUID | None,
    focus_group_id: UUID,
) -> None:
    """Delete a focus group (owning mentor or admin). Memberships cascade."""
    role_info = await _require_staff(conn, user_id)

    query = delete(focus_groups).where(focus_groups.c.id == focus_group_id)
    if role_info.role != UserRole.admin:
        query = query.where(focus_groups.c.mentor_id == user_id)

    result = await conn.execute(query)
    if not result.rowcount:
        raise FocusGroupNotFoundError("Focus group not found")
