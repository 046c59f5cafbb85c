"""
Messaging and notification routes.

Endpoints:
- GET /api/conversations - The user's conversations with last message
- POST /api/conversations - Get or create a conversation with another user
- GET /api/conversations/{id}/messages - Messages in a conversation
- POST /api/conversations/{id}/messages - Send a message
- DELETE /api/messages/{id} - Delete one of the user's messages
- POST /api/conversations/{id}/read - Mark the conversation read
- POST /api/notifications/{id}/read - Mark one notification read
- POST /api/notifications/read-all - Mark all notifications read
- GET /api/group-chats - Focus-group chats the user is in

Read markers and deletions are published to the change feed right away,
so open realtime sessions update their unread counts before the database
echo arrives.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from core.database import get_connection, get_transaction
from core.errors import BeBusyError
from core.messages import (
    delete_message,
    get_conversations,
    get_messages,
    get_or_create_conversation,
    get_user_group_chats,
    mark_all_notifications_read,
    mark_conversation_read,
    mark_notification_read,
    send_message,
)
from core.realtime import change_feed
from core.realtime.events import local_delete, local_update
from web_api.auth import get_current_user_id
from web_api.errors import to_http_exception

router = APIRouter(prefix="/api", tags=["messages"])


class StartConversationRequest(BaseModel):
    other_user_id: UUID


class SendMessageRequest(BaseModel):
    """Schema for sending a message. Needs content or a file."""

    content: str | None = None
    file_url: str | None = None
    file_type: str | None = None
    file_name: str | None = None


def _publish_local_updates(table: str, rows: list[dict[str, Any]]) -> None:
    for row in rows:
        change_feed.publish(local_update(table, row))


@router.get("/conversations")
async def list_conversations(user_id: UUID = Depends(get_current_user_id)) -> dict[str, Any]:
    async with get_connection() as conn:
        conversations = await get_conversations(conn, user_id)
    return {"conversations": conversations}


@router.post("/conversations")
async def start_conversation(
    request: StartConversationRequest,
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    try:
        async with get_transaction() as conn:
            conversation = await get_or_create_conversation(
                conn, user_id, request.other_user_id
            )
    except BeBusyError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"conversation": conversation}


@router.get("/conversations/{conversation_id}/messages")
async def list_messages(
    conversation_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    try:
        async with get_connection() as conn:
            messages = await get_messages(conn, user_id, conversation_id)
    except BeBusyError as e:
        raise to_http_exception(e)
    return {"messages": messages}


@router.post("/conversations/{conversation_id}/messages", status_code=201)
async def send_message_endpoint(
    conversation_id: UUID,
    request: SendMessageRequest,
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    try:
        async with get_transaction() as conn:
            message = await send_message(
                conn,
                user_id,
                conversation_id,
                content=request.content,
                file_url=request.file_url,
                file_type=request.file_type,
                file_name=request.file_name,
            )
    except BeBusyError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"message": message}


@router.delete("/messages/{message_id}")
async def delete_message_endpoint(
    message_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    try:
        async with get_transaction() as conn:
            deleted = await delete_message(conn, user_id, message_id)
    except BeBusyError as e:
        raise to_http_exception(e)

    change_feed.publish(local_delete("messages", deleted))
    return {"status": "deleted"}


@router.post("/conversations/{conversation_id}/read")
async def mark_conversation_read_endpoint(
    conversation_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    try:
        async with get_transaction() as conn:
            updated = await mark_conversation_read(conn, user_id, conversation_id)
    except BeBusyError as e:
        raise to_http_exception(e)

    _publish_local_updates("messages", updated)
    return {"marked_read": len(updated)}


@router.post("/notifications/{notification_id}/read")
async def mark_notification_read_endpoint(
    notification_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    try:
        async with get_transaction() as conn:
            updated = await mark_notification_read(conn, user_id, notification_id)
    except BeBusyError as e:
        raise to_http_exception(e)

    _publish_local_updates("notifications", [updated])
    return {"marked_read": 1}


@router.post("/notifications/read-all")
async def mark_all_notifications_read_endpoint(
    user_id: UUID = Depends(get_current_user_id),
) -> dict[str, Any]:
    async with get_transaction() as conn:
        updated = await mark_all_notifications_read(conn, user_id)

    _publish_local_updates("notifications", updated)
    return {"marked_read": len(updated)}


@router.get("/group-chats")
async def list_group_chats(user_id: UUID = Depends(get_current_user_id)) -> dict[str, Any]:
    async with get_connection() as conn:
        group_chats = await get_user_group_chats(conn, user_id)
    return {"group_chats": group_chats}
