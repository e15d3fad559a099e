import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession
from spliteasy.db.session import get_db
from spliteasy.core.chat_hub import chat_hub
from spliteasy.core.dependencies import get_current_user, get_membership
from spliteasy.core.security import user_id_from_token
from spliteasy.models.group import Group
from spliteasy.schemas.chat import MessageCreate, MessageOut, UnreadCountOut
from spliteasy.services.chat_services import delete_message, list_messages, send_message, unread_counts

logger = logging.getLogger(__name__)

# policy violation: bad credentials or not allowed in this group
CLOSE_POLICY_VIOLATION = 1008

router = APIRouter()

@router.get("/unread-counts", response_model=list[UnreadCountOut])
async def fetch_unread_counts(db: AsyncSession = Depends(get_db), user = Depends(get_current_user)):
    return await unread_counts(db, user.id)

@router.get("/{group_id}/messages", response_model=list[MessageOut])
async def fetch_messages(
    group_id: int,
    limit: int = Query(50, ge=1, le=200),
    before: int | None = None,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user)
):
    return await list_messages(db, group_id, user.id, limit=limit, before=before)

@router.post("/{group_id}/messages", response_model=MessageOut, status_code=201)
async def post_message(
    group_id: int,
    data: MessageCreate,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user)
):
    return await send_message(db, group_id, user.id, data.content)

@router.delete("/messages/{message_id}")
async def remove_message(
    message_id: int,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user)
):
    return await delete_message(db, message_id, user.id)

@router.websocket("/ws")
async def chat_socket(
    websocket: WebSocket,
    group_id: int = Query(alias="groupId"),
    user_id: int = Query(alias="userId"),
    token: str = Query(),
    db: AsyncSession = Depends(get_db)
):
    await websocket.accept()

    try:
        token_user_id = user_id_from_token(token)
    except HTTPException as e:
        await websocket.close(code=CLOSE_POLICY_VIOLATION, reason=str(e.detail))
        return

    if token_user_id != user_id:
        await websocket.close(code=CLOSE_POLICY_VIOLATION, reason="Token does not match user")
        return

    if not await db.get(Group, group_id):
        await websocket.close(code=CLOSE_POLICY_VIOLATION, reason="Group not found")
        return

    if not await get_membership(db, group_id, user_id):
        await websocket.close(code=CLOSE_POLICY_VIOLATION, reason="Not a member of this group")
        return

    # release the connection before the long-lived receive loop
    await db.close()

    chat_hub.connect(group_id, websocket)
    logger.info("chat connected: user %s group %s", user_id, group_id)

    try:
        await websocket.send_json({
            "type": "connected",
            "message": "Chat WebSocket connected successfully",
            "groupId": group_id,
        })

        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("ignoring malformed chat frame from user %s", user_id)
                continue

            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        pass
    finally:
        chat_hub.disconnect(group_id, websocket)
        logger.info("chat disconnected: user %s group %s", user_id, group_id)
