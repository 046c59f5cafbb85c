"""
Direct messaging and notifications.

Also provides the unread-id queries the realtime counters are seeded from.
"""

import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import and_, case, delete, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncConnection

from .errors import BannedError, NotFoundError, PermissionDeniedError
from .roles import resolve_role
from .tables import (
    conversations,
    focus_groups,
    group_members,
    groups,
    messages,
    notifications,
    profiles,
)

logger = logging.getLogger(__name__)


def _participant(user_id: UUID):
    return or_(conversations.c.user1_id == user_id, conversations.c.user2_id == user_id)


async def get_conversation_for_user(
    conn: AsyncConnection,
    user_id: UUID,
    conversation_id: UUID,
) -> dict[str, Any]:
    """Get a conversation the user takes part in, else NotFoundError."""
    result = await conn.execute(
        select(conversations)
        .where(conversations.c.id == conversation_id)
        .where(_participant(user_id))
    )
    row = result.mappings().first()
    if not row:
        raise NotFoundError("Conversation not found")
    return dict(row)


async def get_or_create_conversation(
    conn: AsyncConnection,
    user_id: UUID,
    other_user_id: UUID,
) -> dict[str, Any]:
    """
    Find the conversation between two users, creating it if missing.

    Raises:
        ValueError: Both ids are the same user
        NotFoundError: The other user has no profile
    """
    if user_id == other_user_id:
        raise ValueError("Cannot start a conversation with yourself")

    result = await conn.execute(
        select(conversations).where(
            or_(
                and_(
                    conversations.c.user1_id == user_id,
                    conversations.c.user2_id == other_user_id,
                ),
                and_(
                    conversations.c.user1_id == other_user_id,
                    conversations.c.user2_id == user_id,
                ),
            )
        )
    )
    row = result.mappings().first()
    if row:
        return dict(row)

    result = await conn.execute(select(profiles.c.id).where(profiles.c.id == other_user_id))
    if result.first() is None:
        raise NotFoundError("User not found")

    result = await conn.execute(
        insert(conversations)
        .values(user1_id=user_id, user2_id=other_user_id)
        .returning(conversations)
    )
    return dict(result.mappings().first())


async def get_conversations(conn: AsyncConnection, user_id: UUID) -> list[dict[str, Any]]:
    """
    The user's conversations, most recently active first.

    Each entry carries the other participant's profile and the last message
    (None for an empty conversation).
    """
    other_user_id = case(
        (conversations.c.user1_id == user_id, conversations.c.user2_id),
        else_=conversations.c.user1_id,
    )
    result = await conn.execute(
        select(
            conversations.c.id,
            conversations.c.updated_at,
            profiles.c.id.label("other_user_id"),
            profiles.c.username,
            profiles.c.full_name,
            profiles.c.avatar_url,
        )
        .join(profiles, profiles.c.id == other_user_id)
        .where(_participant(user_id))
        .order_by(conversations.c.updated_at.desc())
    )
    rows = [dict(row) for row in result.mappings()]
    if not rows:
        return []

    # Newest message per conversation
    result = await conn.execute(
        select(
            messages.c.conversation_id,
            messages.c.id,
            messages.c.content,
            messages.c.created_at,
            messages.c.file_url,
            messages.c.file_type,
            messages.c.file_name,
        )
        .where(messages.c.conversation_id.in_([row["id"] for row in rows]))
        .distinct(messages.c.conversation_id)
        .order_by(messages.c.conversation_id, messages.c.created_at.desc())
    )
    last_messages = {row["conversation_id"]: dict(row) for row in result.mappings()}

    return [
        {
            "id": row["id"],
            "other_user": {
                "id": row["other_user_id"],
                "username": row["username"],
                "full_name": row["full_name"],
                "avatar_url": row["avatar_url"],
            },
            "last_message": last_messages.get(row["id"]),
            "updated_at": row["updated_at"],
        }
        for row in rows
    ]


async def get_messages(
    conn: AsyncConnection,
    user_id: UUID,
    conversation_id: UUID,
) -> list[dict[str, Any]]:
    """Messages of a conversation the user takes part in, oldest first."""
    await get_conversation_for_user(conn, user_id, conversation_id)

    result = await conn.execute(
        select(
            messages,
            profiles.c.username.label("sender_username"),
            profiles.c.full_name.label("sender_full_name"),
            profiles.c.avatar_url.label("sender_avatar_url"),
        )
        .join(profiles, profiles.c.id == messages.c.sender_id)
        .where(messages.c.conversation_id == conversation_id)
        .order_by(messages.c.created_at.asc())
    )
    return [dict(row) for row in result.mappings()]


async def get_user_group_chats(conn: AsyncConnection, user_id: UUID) -> list[dict[str, Any]]:
    """
    Group chats the user is in that belong to a focus group.

    Plain discussion groups are left out.
    """
    result = await conn.execute(
        select(
            groups.c.id,
            groups.c.name,
            groups.c.description,
            groups.c.members_count,
            groups.c.created_at,
            group_members.c.role,
            focus_groups.c.id.label("focus_group_id"),
        )
        .join(group_members, group_members.c.group_id == groups.c.id)
        .join(focus_groups, focus_groups.c.group_id == groups.c.id)
        .where(group_members.c.user_id == user_id)
        .order_by(groups.c.created_at.desc())
    )
    return [dict(row) for row in result.mappings()]


async def send_message(
    conn: AsyncConnection,
    user_id: UUID | None,
    conversation_id: UUID,
    content: str | None = None,
    file_url: str | None = None,
    file_type: str | None = None,
    file_name: str | None = None,
) -> dict[str, Any]:
    """
    Send a message into a conversation and bump its updated_at.

    Raises:
        NotAuthenticatedError: No identity
        BannedError: Sender is banned
        NotFoundError: Sender is not part of the conversation
        ValueError: Neither content nor a file
    """
    role_info = await resolve_role(conn, user_id)
    if role_info.is_banned:
        raise BannedError("Your account has been banned. You cannot send messages.")

    if not (content and content.strip()) and not file_url:
        raise ValueError("Message must have content or a file")

    await get_conversation_for_user(conn, user_id, conversation_id)

    result = await conn.execute(
        insert(messages)
        .values(
            conversation_id=conversation_id,
            sender_id=user_id,
            content=content or None,
            is_read=False,
            file_url=file_url or None,
            file_type=file_type or None,
            file_name=file_name or None,
        )
        .returning(messages)
    )
    message = dict(result.mappings().first())

    await conn.execute(
        update(conversations)
        .where(conversations.c.id == conversation_id)
        .values(updated_at=datetime.now(timezone.utc))
    )
    logger.info(f"Message {message['id']} sent in conversation {conversation_id}")
    return message


async def delete_message(
    conn: AsyncConnection,
    user_id: UUID,
    message_id: UUID,
) -> dict[str, Any]:
    """
    Delete one of the user's own messages.

    Returns:
        The deleted row (id, conversation_id, sender_id, is_read)

    Raises:
        NotFoundError: No such message
        PermissionDeniedError: The message was sent by someone else
    """
    result = await conn.execute(
        select(
            messages.c.id,
            messages.c.conversation_id,
            messages.c.sender_id,
            messages.c.is_read,
        ).where(messages.c.id == message_id)
    )
    row = result.mappings().first()
    if not row:
        raise NotFoundError("Message not found")
    if row["sender_id"] != user_id:
        raise PermissionDeniedError("You can only delete your own messages")

    await conn.execute(delete(messages).where(messages.c.id == message_id))
    logger.info(f"Message {message_id} deleted by {user_id}")
    return dict(row)


async def mark_conversation_read(
    conn: AsyncConnection,
    user_id: UUID,
    conversation_id: UUID,
) -> list[dict[str, Any]]:
    """
    Mark every unread message from the other participant as read.

    Returns:
        The updated rows (id, conversation_id, sender_id, is_read)
    """
    await get_conversation_for_user(conn, user_id, conversation_id)

    result = await conn.execute(
        update(messages)
        .where(messages.c.conversation_id == conversation_id)
        .where(messages.c.sender_id != user_id)
        .where(messages.c.is_read.is_(False))
        .values(is_read=True)
        .returning(
            messages.c.id,
            messages.c.conversation_id,
            messages.c.sender_id,
            messages.c.is_read,
        )
    )
    return [dict(row) for row in result.mappings()]


async def mark_notification_read(
    conn: AsyncConnection,
    user_id: UUID,
    notification_id: UUID,
) -> dict[str, Any]:
    result = await conn.execute(
        update(notifications)
        .where(notifications.c.id == notification_id)
        .where(notifications.c.user_id == user_id)
        .values(is_read=True)
        .returning(notifications.c.id, notifications.c.user_id, notifications.c.is_read)
    )
    row = result.mappings().first()
    if not row:
        raise NotFoundError("Notification not found")
    return dict(row)


async def mark_all_notifications_read(
    conn: AsyncConnection,
    user_id: UUID,
) -> list[dict[str, Any]]:
    result = await conn.execute(
        update(notifications)
        .where(notifications.c.user_id == user_id)
        .where(notifications.c.is_read.is_(False))
        .values(is_read=True)
        .returning(notifications.c.id, notifications.c.user_id, notifications.c.is_read)
    )
    return [dict(row) for row in result.mappings()]


# ============================================================================
# Realtime seed queries
# ============================================================================


async def get_conversation_ids(conn: AsyncConnection, user_id: UUID) -> list[UUID]:
    """Ids of every conversation the user takes part in."""
    result = await conn.execute(
        select(conversations.c.id).where(_participant(user_id))
    )
    return list(result.scalars().all())


async def get_unread_message_ids(
    conn: AsyncConnection,
    user_id: UUID,
    conversation_ids: list[UUID],
) -> list[UUID]:
    """Unread messages sent to the user in the given conversations."""
    if not conversation_ids:
        return []
    result = await conn.execute(
        select(messages.c.id)
        .where(messages.c.conversation_id.in_(conversation_ids))
        .where(messages.c.sender_id != user_id)
        .where(messages.c.is_read.is_(False))
    )
    return list(result.scalars().all())


async def get_unread_notification_ids(conn: AsyncConnection, user_id: UUID) -> list[UUID]:
    result = await conn.execute(
        select(notifications.c.id)
        .where(notifications.c.user_id == user_id)
        .where(notifications.c.is_read.is_(False))
    )
    return list(result.scalars().all())
