from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from spliteasy.db.session import get_db
from spliteasy.core.security import get_token_from_request, user_id_from_token
from spliteasy.core.errors import NotFound, Unauthorized
from spliteasy.models.group import Group
from spliteasy.models.group_member import GroupMember
from spliteasy.services.user_service import get_user_by_id

async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)):
    token = get_token_from_request(request=request)
    user_id = user_id_from_token(token)

    user = await get_user_by_id(db, user_id)

    if user is None:
        raise HTTPException(status_code=401, detail="User not found")

    return user

async def get_group_or_404(db: AsyncSession, group_id: int) -> Group:
    group = await db.get(Group, group_id)
    if not group:
        raise NotFound(f"Group {group_id} not found")
    return group

async def get_membership(db: AsyncSession, group_id: int, user_id: int) -> GroupMember | None:
    res = await db.execute(
        select(GroupMember).where(
            GroupMember.group_id == group_id,
            GroupMember.user_id == user_id
        )
    )
    return res.scalar_one_or_none()

async def check_group_membership(db: AsyncSession, group_id: int, user_id: int) -> GroupMember:
    await get_group_or_404(db, group_id)

    member = await get_membership(db, group_id, user_id)
    if not member:
        raise Unauthorized("You are not a member of this group")

    return member

async def check_group_admin(db: AsyncSession, group_id: int, user_id: int) -> GroupMember:
    member = await check_group_membership(db, group_id, user_id)
    if not member.is_admin:
        raise Unauthorized("Only a group admin can do this")
    return member
