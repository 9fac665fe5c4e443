"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - WebSocket /ws: Real-time chat (one socket per client, many rooms)
    - GET  /chats: The caller's chats, most recently active first
    - GET  /chats/{chat_id}: One chat
    - GET  /chats/{chat_id}/messages: Paginated message history
    - POST /chats/{chat_id}/messages: Send without a live socket
    - POST /chats/private: Find or create a direct chat
    - POST /chats/group: Create a group chat
    - PUT  /chats/{chat_id}/read: Mark every message in a chat as read

The WebSocket handshake authenticates before accepting: the bearer token
comes from the ``token`` query parameter or the Authorization header,
and a bad or missing token closes the socket with code 4401. After that
every frame is a JSON object with a ``type`` field (see ``events``).
Handler failures are reported as ``error`` events and never close the
connection.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from parley.auth.dependencies import current_user
from parley.auth.service import extract_bearer
from parley.config import ChatSettings
from parley.errors import ChatError, Internal, Unauthenticated, ValidationFailed
from parley.responses import ok, pagination
from parley.store import UserPublic

from . import events
from .coordinator import DeliveryCoordinator
from .schemas import DirectChatRequest, GroupChatRequest, SendMessageRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chats"])

# Application-defined close code for a rejected handshake.
WS_CLOSE_UNAUTHENTICATED = 4401


def get_coordinator(request: Request) -> DeliveryCoordinator:
    return request.app.state.coordinator


def get_chat_settings(request: Request) -> ChatSettings:
    return request.app.state.config.chat


def _page_window(page: int, limit: Optional[int], default: int, maximum: int):
    limit = min(limit or default, maximum)
    return (page - 1) * limit, limit


# =============================================================================
# WebSocket
# =============================================================================


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = Query(None)) -> None:
    """Authenticated real-time connection.

    Flow:
        1. Authenticate the token (query parameter or Authorization header)
        2. Accept, register presence, send ``connected``
        3. Receive loop: parse frame -> dispatch to the coordinator
        4. On disconnect: unregister presence, announce ``userOffline``
    """
    app = websocket.app
    gate = app.state.gate
    coordinator: DeliveryCoordinator = app.state.coordinator
    manager = coordinator.transport
    max_frame_bytes = app.state.config.chat.max_frame_bytes

    credential = token or extract_bearer(websocket.headers.get("authorization"))
    try:
        user: UserPublic = gate.authenticate(credential)
    except Unauthenticated as exc:
        logger.warning(f"[WS] Rejected handshake: {exc.message}")
        await websocket.close(code=WS_CLOSE_UNAUTHENTICATED, reason=exc.message)
        return

    connection = await manager.accept(websocket, user.id)
    handle = connection.handle
    try:
        await coordinator.connect(user, handle)
        await manager.send(handle, events.Connected(userId=user.id, handle=handle))
        logger.info(f"[WS] User {user.username} ({user.id}) connected as {handle}")

        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")

            try:
                if len(raw.encode("utf-8")) > max_frame_bytes:
                    raise ValidationFailed(f"Frame exceeds {max_frame_bytes} bytes")
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    raise ValidationFailed("Malformed JSON frame")
                event = events.parse_inbound(data)
                logger.debug("[WS] %s received: type=%s", handle, event.type)
                await coordinator.dispatch(user.id, handle, event)
            except ChatError as exc:
                logger.info(f"[WS] {exc.code} error for {user.id}: {exc.message}")
                await manager.send(handle, events.ErrorEvent(error=exc.message, code=exc.code))
            except Exception:
                logger.exception(f"[WS] Unhandled error for {user.id}")
                await manager.send(
                    handle, events.ErrorEvent(error=Internal.default_message, code=Internal.code)
                )

    except WebSocketDisconnect:
        logger.info(f"[WS] User {user.id} disconnected ({handle})")
    finally:
        await coordinator.disconnect(user.id, handle)


# =============================================================================
# REST
# =============================================================================


@router.get("/chats")
async def list_chats(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    user: UserPublic = Depends(current_user),
    coordinator: DeliveryCoordinator = Depends(get_coordinator),
    settings: ChatSettings = Depends(get_chat_settings),
) -> JSONResponse:
    offset, limit = _page_window(page, limit, settings.chats_page_size, settings.max_page_size)
    chats, total = coordinator.list_chats(user.id, offset, limit)
    return ok("Chats retrieved successfully", chats, pagination=pagination(page, limit, total))


@router.get("/chats/{chat_id}")
async def get_chat(
    chat_id: str,
    user: UserPublic = Depends(current_user),
    coordinator: DeliveryCoordinator = Depends(get_coordinator),
) -> JSONResponse:
    return ok("Chat retrieved successfully", coordinator.get_chat(user.id, chat_id))


@router.get("/chats/{chat_id}/messages")
async def get_messages(
    chat_id: str,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    user: UserPublic = Depends(current_user),
    coordinator: DeliveryCoordinator = Depends(get_coordinator),
    settings: ChatSettings = Depends(get_chat_settings),
) -> JSONResponse:
    """Page 1 is the newest messages; each page is returned oldest first."""
    offset, limit = _page_window(page, limit, settings.messages_page_size, settings.max_page_size)
    messages, total = coordinator.history(user.id, chat_id, offset, limit)
    return ok("Messages retrieved successfully", messages, pagination=pagination(page, limit, total))


@router.post("/chats/{chat_id}/messages", status_code=201)
async def send_message(
    chat_id: str,
    body: SendMessageRequest,
    user: UserPublic = Depends(current_user),
    coordinator: DeliveryCoordinator = Depends(get_coordinator),
) -> JSONResponse:
    message = await coordinator.send_message(
        user.id,
        chat_id,
        body.content,
        message_type=body.messageType,
        parent_message_id=body.parentMessageId,
        thread_root_id=body.threadRootId,
        forwarded_message_id=body.forwardedMessageId,
    )
    return ok("Message sent successfully", message, status_code=201)


@router.post("/chats/private")
async def create_private_chat(
    body: DirectChatRequest,
    user: UserPublic = Depends(current_user),
    coordinator: DeliveryCoordinator = Depends(get_coordinator),
) -> JSONResponse:
    chat, created = await coordinator.find_or_create_direct_chat(user.id, body.participantId)
    if created:
        return ok("Private chat created successfully", chat, status_code=201)
    return ok("Chat already exists", chat)


@router.post("/chats/group", status_code=201)
async def create_group_chat(
    body: GroupChatRequest,
    user: UserPublic = Depends(current_user),
    coordinator: DeliveryCoordinator = Depends(get_coordinator),
) -> JSONResponse:
    if not body.name.strip() or len(body.participants) < 2:
        raise ValidationFailed("Name and at least 2 participants required")
    chat = await coordinator.create_group(
        user.id, body.name, body.participants, description=body.description, min_others=2
    )
    return ok("Group chat created successfully", chat, status_code=201)


@router.put("/chats/{chat_id}/read")
async def mark_chat_read(
    chat_id: str,
    user: UserPublic = Depends(current_user),
    coordinator: DeliveryCoordinator = Depends(get_coordinator),
) -> JSONResponse:
    marked = await coordinator.mark_all_read(user.id, chat_id)
    return ok("Messages marked as read", {"chatId": chat_id, "markedCount": len(marked)})
