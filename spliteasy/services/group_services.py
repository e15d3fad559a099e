import logging
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import delete, func, select
from spliteasy.models.group import Group
from spliteasy.models.expense import Expense
from spliteasy.models.expense_split import ExpenseSplit
from spliteasy.models.group_member import GroupMember
from spliteasy.models.message import Message
from spliteasy.models.payment import Payment
from spliteasy.models.settlement import Settlement
from spliteasy.models.user import User
from spliteasy.core.dependencies import get_group_or_404, get_membership, check_group_admin, check_group_membership
from spliteasy.core.errors import NotFound, Unauthorized, ValidationError
from spliteasy.core.utils import is_settled

logger = logging.getLogger(__name__)

async def create_group(db: AsyncSession, title: str, currency: str, owner_id: int):
    group = Group(title=title, currency=currency, owner_id=owner_id)
    db.add(group)
    await db.flush()

    # owner is always an admin member
    member = GroupMember(group_id=group.id, user_id=owner_id, is_admin=True)
    db.add(member)

    await db.commit()
    await db.refresh(group)

    logger.info("group %s created by %s (%s)", group.id, owner_id, currency)
    return group

async def get_group(db: AsyncSession, group_id: int, user_id: int):
    await check_group_membership(db, group_id, user_id)
    return await get_group_or_404(db, group_id)

async def add_member(db: AsyncSession, group_id: int, user_id: int, admin_id: int, is_admin: bool = False):
    await check_group_admin(db, group_id, admin_id)

    if not await db.get(User, user_id):
        raise NotFound(f"User {user_id} not found")

    if await get_membership(db, group_id, user_id):
        raise ValidationError("User already exists in this group")

    new_member = GroupMember(group_id=group_id, user_id=user_id, is_admin=is_admin)
    db.add(new_member)
    await db.commit()
    await db.refresh(new_member)
    return new_member

async def remove_member(db: AsyncSession, group_id: int, user_id: int, admin_id: int):
    await check_group_admin(db, group_id, admin_id)
    group = await get_group_or_404(db, group_id)

    if user_id == group.owner_id:
        raise ValidationError("The group owner cannot be removed")

    member = await get_membership(db, group_id, user_id)

    if not member:
        raise NotFound("User is not a member of this group")

    await db.delete(member)
    await db.commit()

    return {"status": "member_removed"}

async def list_group_for_user(db: AsyncSession, user_id: int):
    q = (
        select(Group)
        .join(GroupMember)
        .where(GroupMember.user_id == user_id)
        .order_by(Group.id)
    )
    result = await db.execute(q)
    return result.scalars().all()

async def list_member_ids(db: AsyncSession, group_id: int) -> list[int]:
    res = await db.execute(
        select(GroupMember.user_id)
        .where(GroupMember.group_id == group_id)
        .order_by(GroupMember.user_id)
    )
    return list(res.scalars().all())

async def list_group_members(db: AsyncSession, user_id: int, group_id: int):
    await check_group_membership(db, group_id, user_id)

    members_q = (
        select(GroupMember.user_id, GroupMember.is_admin, User.name, User.email)
        .join(User, User.id == GroupMember.user_id)
        .where(GroupMember.group_id == group_id)
        .order_by(GroupMember.user_id)
    )

    result = await db.execute(members_q)
    return [
        {"user_id": uid, "is_admin": is_admin, "name": name, "email": email}
        for uid, is_admin, name, email in result.all()
    ]

async def edit_group(db: AsyncSession, group_id: int, user_id: int, data):
    await check_group_admin(db, group_id, user_id)
    group = await get_group_or_404(db, group_id)

    # currency is fixed at creation
    if data.title:
        group.title = data.title

    await db.commit()
    await db.refresh(group)
    return group

async def set_member_admin(db: AsyncSession, group_id: int, user_id: int, admin_id: int, is_admin: bool):
    await check_group_admin(db, group_id, admin_id)
    group = await get_group_or_404(db, group_id)

    if user_id == group.owner_id:
        raise ValidationError("The group owner's admin status cannot be changed")

    member = await get_membership(db, group_id, user_id)
    if not member:
        raise NotFound("User is not a member of this group")

    member.is_admin = is_admin
    await db.commit()
    await db.refresh(member)

    logger.info("group %s: user %s admin=%s (by %s)", group_id, user_id, is_admin, admin_id)
    return member

async def leave_group(db: AsyncSession, group_id: int, user_id: int):
    member = await check_group_membership(db, group_id, user_id)
    group = await get_group_or_404(db, group_id)

    if user_id == group.owner_id:
        raise ValidationError("The group owner cannot leave; delete the group instead")

    # balance_services imports this module
    from spliteasy.services.balance_services import get_group_net_map

    balance = (await get_group_net_map(db, group_id)).get(user_id)
    if balance is not None and not is_settled(balance):
        raise ValidationError("Settle your balance before leaving the group")

    await db.delete(member)
    await db.commit()

    logger.info("user %s left group %s", user_id, group_id)
    return {"status": "left_group"}

async def delete_group(db: AsyncSession, group_id: int, user_id: int):
    group = await get_group_or_404(db, group_id)

    if group.owner_id != user_id:
        raise Unauthorized("Only the group owner can delete the group")

    live_expenses = await db.scalar(
        select(func.count(Expense.id))
        .where(Expense.group_id == group_id, Expense.is_deleted == False)  # noqa: E712
    )
    if live_expenses:
        raise ValidationError("Cannot delete a group that still has expenses")

    settlement_ids = select(Settlement.id).where(Settlement.group_id == group_id)
    expense_ids = select(Expense.id).where(Expense.group_id == group_id)

    for stmt in (
        delete(Payment).where(Payment.settlement_id.in_(settlement_ids)),
        delete(Settlement).where(Settlement.group_id == group_id),
        delete(ExpenseSplit).where(ExpenseSplit.expense_id.in_(expense_ids)),
        delete(Expense).where(Expense.group_id == group_id),
        delete(Message).where(Message.group_id == group_id),
    ):
        await db.execute(stmt.execution_options(synchronize_session=False))

    # members go with the group
    await db.delete(group)
    await db.commit()

    logger.info("group %s deleted by %s", group_id, user_id)
    return {"status": "group_deleted"}
