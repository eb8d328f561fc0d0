import asyncio
import contextlib
import logging
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, WebSocket, WebSocketDisconnect, status
from studious.config import settings
from studious.core.dependencies import get_viewer_session
from studious.core.errors import StudiousError, get_error_message
from studious.database.storage import SupabaseStorage
from studious.database.supabase_client import get_supabase
from studious.modules.auth.service import AuthService
from studious.modules.chat.conversation import ConversationView
from studious.modules.chat.engine import ViewerSession
from studious.modules.chat.schemas import ConversationResponse, MessageCreate, MessageResponse
from studious.modules.chat.visibility import to_response, visible
from studious.modules.resources.service import ResourceService
from starlette.websockets import WebSocketState
from supabase import Client

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

WS_UNAUTHORIZED = 4401
WS_FORBIDDEN = 4403
WS_UNAVAILABLE = 4503


def get_file_uploader(supabase: Client = Depends(get_supabase)) -> ResourceService:
    return ResourceService(supabase, SupabaseStorage(supabase, settings.storage_files_bucket))


@router.get("/groups/{group_id}/messages", response_model=ConversationResponse)
async def get_conversation(
    group_id: str,
    viewer: ViewerSession = Depends(get_viewer_session)
):
    """Group, members and the messages visible to the caller (cached for a few minutes)"""
    await viewer.require_member(group_id)
    history = await viewer.load_conversation(group_id)
    subscriber = viewer.registry.get(group_id)
    return ConversationResponse(
        group=history.group,
        members=history.members,
        messages=[to_response(m) for m in visible(history.messages, viewer.viewer_id, history.hidden_message_ids)],
        is_admin=history.is_admin,
        unread_count=subscriber.unread_count if subscriber is not None else 0,
    )


@router.post("/groups/{group_id}/messages", response_model=MessageResponse, status_code=201)
async def send_message(
    group_id: str,
    message: MessageCreate,
    viewer: ViewerSession = Depends(get_viewer_session)
):
    """Send a text or link message; subscribers receive it through the live feed"""
    if not message.content:
        raise HTTPException(status_code=422, detail="Message content cannot be empty")
    await viewer.require_member(group_id)
    created = await viewer.send_message(group_id, message.content, message.message_type)
    return to_response(created)


@router.post("/groups/{group_id}/messages/file", response_model=MessageResponse, status_code=201)
async def send_file_message(
    group_id: str,
    file: UploadFile = File(...),
    viewer: ViewerSession = Depends(get_viewer_session),
    uploader: ResourceService = Depends(get_file_uploader)
):
    """Upload a file and post it to the conversation"""
    await viewer.require_member(group_id)
    content = await file.read()
    file_name = file.filename or "attachment"
    file_url = uploader.upload_file(group_id, file_name, content, file.content_type)
    created = await viewer.send_message(
        group_id,
        None,
        "file",
        file_url=file_url,
        file_name=file_name,
        file_type=file.content_type,
        file_size=len(content),
    )
    return to_response(created)


@router.post("/messages/{message_id}/hide", status_code=204)
async def hide_message(
    message_id: str,
    viewer: ViewerSession = Depends(get_viewer_session)
):
    """Hide a message for the caller only"""
    await viewer.hide_for_me(message_id)
    return None


@router.delete("/messages/{message_id}", response_model=MessageResponse)
async def delete_message(
    message_id: str,
    viewer: ViewerSession = Depends(get_viewer_session)
):
    """Delete your own message for everyone; it stays in place as a placeholder"""
    deleted = await viewer.delete_for_everyone(message_id)
    return to_response(deleted)


def _messages_frame(view: ConversationView) -> dict:
    return {
        "type": "messages",
        "messages": [to_response(m).model_dump(mode="json") for m in view.visible_messages()],
        "unread_count": view.unread_count,
    }


def _snapshot_frame(view: ConversationView) -> dict:
    frame = _messages_frame(view)
    frame.update({
        "type": "snapshot",
        "group": view.group.model_dump(mode="json") if view.group else None,
        "members": [m.model_dump(mode="json") for m in view.members],
        "is_admin": view.is_admin,
        "live": view.is_live,
    })
    return frame


async def _handle_command(view: ConversationView, command: dict, outbox: asyncio.Queue) -> None:
    action = command.get("action")
    if action == "send":
        await view.send_message(command.get("content") or "", command.get("message_type", "text"))
    elif action == "hide":
        if await view.hide_for_me(command.get("message_id", "")):
            outbox.put_nowait(_messages_frame(view))
    elif action == "delete":
        if await view.delete_for_everyone(command.get("message_id", "")):
            outbox.put_nowait(_messages_frame(view))
    elif action == "read":
        view.mark_read()
        outbox.put_nowait(_messages_frame(view))
    else:
        outbox.put_nowait({"type": "error", "message": f"Unknown action: {action}"})


async def _pump(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    while True:
        frame = await outbox.get()
        await websocket.send_json(frame)


@router.websocket("/groups/{group_id}/ws")
async def conversation_socket(websocket: WebSocket, group_id: str, token: str = Query(...)):
    """
    Live conversation stream. Sends a snapshot frame, then a messages frame on
    every change and notification frames for toasts. Accepts JSON commands:
    {"action": "send"|"hide"|"delete"|"read", ...}.
    """
    engine = getattr(websocket.app.state, "chat_engine", None)
    await websocket.accept()
    if engine is None:
        await websocket.close(code=WS_UNAVAILABLE)
        return
    try:
        user = AuthService(get_supabase()).get_current_user(token)
    except HTTPException:
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    viewer = await engine.viewer(user["id"])
    try:
        await viewer.require_member(group_id)
    except StudiousError as e:
        await websocket.send_json({"type": "error", "message": e.message})
        await websocket.close(code=WS_FORBIDDEN)
        return

    outbox: asyncio.Queue = asyncio.Queue()
    remove_notifications = viewer.notifier.add_listener(
        lambda n: outbox.put_nowait({"type": "notification", **n.to_dict()})
        if n.conversation_id in (None, group_id) else None
    )
    sender = asyncio.create_task(_pump(websocket, outbox))
    try:
        async with viewer.open_conversation(group_id) as view:
            if view.error:
                outbox.put_nowait({"type": "error", "message": view.error})
                return
            outbox.put_nowait(_snapshot_frame(view))
            stop_watching = view.watch(lambda _messages: outbox.put_nowait(_messages_frame(view)))
            try:
                while True:
                    command = await websocket.receive_json()
                    await _handle_command(view, command, outbox)
            finally:
                stop_watching()
    except WebSocketDisconnect:
        logger.debug(f"Viewer {user['id']} left conversation {group_id}")
    except Exception as e:
        logger.exception("Conversation socket failed: %s", e)
        outbox.put_nowait({"type": "error", "message": get_error_message(e)})
    finally:
        remove_notifications()
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sender
        if websocket.client_state == WebSocketState.CONNECTED:
            with contextlib.suppress(RuntimeError, WebSocketDisconnect):
                while not outbox.empty():
                    await websocket.send_json(outbox.get_nowait())
                await websocket.close(code=status.WS_1000_NORMAL_CLOSURE)
