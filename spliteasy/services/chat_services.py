from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import and_, func, select
from spliteasy.core.chat_hub import chat_hub
from spliteasy.core.dependencies import check_group_membership
from spliteasy.core.errors import NotFound, Unauthorized
from spliteasy.models.group_member import GroupMember
from spliteasy.models.message import Message
from spliteasy.schemas.chat import MessageOut

def message_payload(message: Message) -> dict:
    return MessageOut.model_validate(message).model_dump(mode="json", by_alias=True)

async def list_messages(db: AsyncSession, group_id: int, user_id: int, limit: int = 50, before: int | None = None):
    member = await check_group_membership(db, group_id, user_id)

    q = (
        select(Message)
        .where(Message.group_id == group_id, Message.is_deleted == False)  # noqa: E712
        .order_by(Message.id.desc())
        .limit(limit)
    )
    if before is not None:
        q = q.where(Message.id < before)

    res = await db.execute(q)
    # newest page first from the db, oldest first for the reader
    messages = list(reversed(res.scalars().all()))

    # fetching the latest page marks the group read; older pages don't move the marker
    if before is None and messages:
        newest = messages[-1].id
        if (member.last_read_message_id or 0) < newest:
            member.last_read_message_id = newest
            await db.commit()

    return messages

async def unread_counts(db: AsyncSession, user_id: int):
    """Per-group count of live messages from others that the user hasn't fetched yet."""
    unread = and_(
        Message.group_id == GroupMember.group_id,
        Message.is_deleted == False,  # noqa: E712
        Message.sender_id != user_id,
        Message.id > func.coalesce(GroupMember.last_read_message_id, 0),
    )
    q = (
        select(GroupMember.group_id, func.count(Message.id))
        .select_from(GroupMember)
        .outerjoin(Message, unread)
        .where(GroupMember.user_id == user_id)
        .group_by(GroupMember.group_id)
        .order_by(GroupMember.group_id)
    )
    res = await db.execute(q)
    return [{"group_id": group_id, "unread_count": count} for group_id, count in res.all()]

async def send_message(db: AsyncSession, group_id: int, user_id: int, content: str):
    await check_group_membership(db, group_id, user_id)

    message = Message(group_id=group_id, sender_id=user_id, content=content)
    db.add(message)
    await db.commit()
    await db.refresh(message)

    await chat_hub.broadcast(group_id, {"type": "new_message", "data": message_payload(message)})
    return message

async def delete_message(db: AsyncSession, message_id: int, user_id: int):
    message = await db.get(Message, message_id)

    if not message or message.is_deleted:
        raise NotFound("Message not found")

    if message.sender_id != user_id:
        raise Unauthorized("You can only delete your own messages")

    message.is_deleted = True
    await db.commit()

    await chat_hub.broadcast(message.group_id, {"type": "message_deleted", "data": {"messageId": message.id}})
    return {"status": "deleted"}
