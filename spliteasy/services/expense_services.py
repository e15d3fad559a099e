import logging
from decimal import Decimal
from typing import Dict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from spliteasy.models.expense import Expense, SPLIT_EQUAL, SPLIT_EXACT
from spliteasy.models.expense_split import ExpenseSplit
from spliteasy.core.utils import EPSILON, ZERO, equal_shares, qround
from spliteasy.core.errors import NotFound, Unauthorized, ValidationError
from spliteasy.core.dependencies import get_group_or_404, get_membership, check_group_membership
from spliteasy.services.group_services import list_member_ids

logger = logging.getLogger(__name__)

async def build_splits(db: AsyncSession, group_id: int, amount: Decimal, split_type: str, splits) -> Dict[int, Decimal]:
    """
    Work out every member's share of ``amount``.

    Equal splits go between the listed users, or the whole group when nobody
    is listed. Exact splits must list every share and add up to ``amount``
    within a cent; the stray cent, if any, lands on the last share so the
    shares always sum to the amount exactly.
    """
    member_ids = await list_member_ids(db, group_id)
    user_ids = [s.user_id for s in splits]

    if len(user_ids) != len(set(user_ids)):
        raise ValidationError("Duplicate users found in splits")

    outsiders = set(user_ids) - set(member_ids)
    if outsiders:
        raise ValidationError(f"Users {sorted(outsiders)} are not members of the group")

    if split_type == SPLIT_EQUAL:
        return equal_shares(amount, user_ids or member_ids)

    if not splits:
        raise ValidationError("An exact split needs a share for each user")

    if any(s.share_amount is None or s.share_amount <= 0 for s in splits):
        raise ValidationError("Split amounts must be positive")

    shares = {s.user_id: qround(s.share_amount) for s in splits}
    total = sum(shares.values(), ZERO)

    if abs(total - amount) >= EPSILON:
        raise ValidationError(f"Sum of split amounts ({total}) must equal total amount ({amount})")

    last = max(shares)
    shares[last] = qround(shares[last] + amount - total)
    return shares

async def create_expense(db: AsyncSession, data, payer_id: int):
    group = await get_group_or_404(db, data.group_id)

    if not await get_membership(db, group.id, payer_id):
        raise Unauthorized("Payer is not a member of the group")

    if data.currency and data.currency.upper() != group.currency:
        raise ValidationError(f"Expenses in this group must be in {group.currency}")

    amount = qround(data.amount)
    shares = await build_splits(db, group.id, amount, data.split_type, data.splits)

    expense = Expense(
        group_id=group.id,
        payer_id=payer_id,
        amount=amount,
        currency=group.currency,
        split_type=data.split_type,
        description=data.description,
        splits=[ExpenseSplit(user_id=uid, share_amount=share) for uid, share in shares.items()],
    )
    db.add(expense)
    await db.commit()
    await db.refresh(expense)

    logger.info("expense %s: %s %s paid by %s in group %s", expense.id, amount, group.currency, payer_id, group.id)
    return expense

async def _get_live_expense(db: AsyncSession, expense_id: int) -> Expense:
    expense = await db.get(Expense, expense_id)

    if not expense or expense.is_deleted:
        raise NotFound("Expense not found")

    return expense

async def _check_can_modify(db: AsyncSession, expense: Expense, user_id: int):
    if expense.payer_id == user_id:
        return

    member = await get_membership(db, expense.group_id, user_id)
    if not member or not member.is_admin:
        raise Unauthorized("Only the payer or a group admin can change this expense")

async def edit_expense(db: AsyncSession, data, expense_id: int, user_id: int):
    expense = await _get_live_expense(db, expense_id)
    await _check_can_modify(db, expense, user_id)

    target_group_id = data.group_id if data.group_id is not None else expense.group_id
    moving = target_group_id != expense.group_id
    group = await get_group_or_404(db, target_group_id)

    if moving:
        if not await get_membership(db, group.id, user_id):
            raise Unauthorized("You are not a member of the target group")
        if not await get_membership(db, group.id, expense.payer_id):
            raise ValidationError("Payer is not a member of the target group")

    amount = qround(data.amount) if data.amount is not None else qround(expense.amount)
    split_type = data.split_type or expense.split_type
    splits = data.splits

    if splits is None:
        if split_type == SPLIT_EXACT and (moving or amount != expense.amount or split_type != expense.split_type):
            raise ValidationError("Exact splits must be given again when the amount or group changes")
        if moving:
            # old participants may not exist in the new group
            splits = []
        else:
            splits = [s for s in expense.splits]

    shares = await build_splits(db, group.id, amount, split_type, splits)

    expense.group_id = group.id
    expense.currency = group.currency
    expense.amount = amount
    expense.split_type = split_type
    if data.description is not None:
        expense.description = data.description
    expense.splits = [ExpenseSplit(user_id=uid, share_amount=share) for uid, share in shares.items()]

    await db.commit()
    await db.refresh(expense)

    if moving:
        logger.info("expense %s moved to group %s", expense.id, group.id)
    return expense

async def delete_expense(db: AsyncSession, user_id: int, expense_id: int):
    expense = await _get_live_expense(db, expense_id)
    await _check_can_modify(db, expense, user_id)

    expense.is_deleted = True
    await db.commit()

    return {"status": "deleted"}

async def get_expense_by_id(db: AsyncSession, expense_id: int, user_id: int):
    expense = await _get_live_expense(db, expense_id)
    await check_group_membership(db, expense.group_id, user_id)
    return expense

async def list_group_expenses(db: AsyncSession, user_id: int, group_id: int, include_deleted: bool = False):
    await check_group_membership(db, group_id, user_id)
    return await load_group_expenses(db, group_id, include_deleted=include_deleted)

async def load_group_expenses(db: AsyncSession, group_id: int, include_deleted: bool = False):
    q = (
        select(Expense)
        .where(Expense.group_id == group_id)
        .order_by(Expense.created_at, Expense.id)
    )
    if not include_deleted:
        q = q.where(Expense.is_deleted == False)  # noqa: E712

    res = await db.execute(q)
    return res.scalars().all()
