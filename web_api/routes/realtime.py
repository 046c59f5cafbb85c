"""
Realtime stream route.

Endpoints:
- GET /api/realtime/stream - Server-Sent Events for the current user

The stream starts with a snapshot (unread messages, unread notifications,
today's check-in flag, role) and then sends one event per change. See
core/realtime/session.py for the message shapes.
"""

import asyncio
import json
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from core.errors import BeBusyError
from core.realtime import RealtimeSession
from web_api.auth import get_current_user_id
from web_api.errors import to_http_exception

router = APIRouter(prefix="/api/realtime", tags=["realtime"])

KEEPALIVE_SECONDS = 15


async def event_generator(request: Request, session: RealtimeSession):
    """Yield SSE frames until the client disconnects or the session ends."""
    try:
        while True:
            if await request.is_disconnected():
                break
            try:
                message = await asyncio.wait_for(
                    session.queue.get(), timeout=KEEPALIVE_SECONDS
                )
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue

            yield f"data: {json.dumps(message)}\n\n"
            if message["type"] == "signed_out":
                break
    finally:
        await session.close()


@router.get("/stream")
async def stream(
    request: Request,
    user_id: UUID = Depends(get_current_user_id),
) -> StreamingResponse:
    session = RealtimeSession(user_id)
    try:
        await session.start()
    except BeBusyError as e:
        await session.close()
        raise to_http_exception(e)

    return StreamingResponse(
        event_generator(request, session),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
