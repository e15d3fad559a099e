from decimal import Decimal
from typing import Dict, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from spliteasy.core.dependencies import check_group_membership
from spliteasy.core.utils import compute_net_balances, simplify_debts, settlement_metrics
from spliteasy.models.settlement import Settlement
from spliteasy.services.expense_services import load_group_expenses
from spliteasy.services.group_services import list_member_ids

async def load_group_settlements(db: AsyncSession, group_id: int) -> List[Settlement]:
    res = await db.execute(
        select(Settlement)
        .where(Settlement.group_id == group_id)
        .order_by(Settlement.id)
    )
    return list(res.scalars().all())

async def compute_balances(db: AsyncSession, group_id: int) -> List[dict]:
    """Recomputed on every call from expenses and settlement payments; nothing is cached."""
    expenses = await load_group_expenses(db, group_id)
    settlements = await load_group_settlements(db, group_id)
    member_ids = await list_member_ids(db, group_id)

    return compute_net_balances(expenses, settlements, member_ids)

async def get_group_net_map(db: AsyncSession, group_id: int) -> Dict[int, Decimal]:
    return {row["user_id"]: row["balance"] for row in await compute_balances(db, group_id)}

async def get_group_balances(db: AsyncSession, group_id: int, user_id: int) -> List[dict]:
    await check_group_membership(db, group_id, user_id)
    return await compute_balances(db, group_id)

async def get_suggested_settlements(db: AsyncSession, group_id: int, user_id: int):
    await check_group_membership(db, group_id, user_id)

    net = await get_group_net_map(db, group_id)
    transfers = simplify_debts(net)

    return {
        "transfers": [
            {"from_id": f, "to_id": t, "amount": a}
            for f, t, a in transfers
        ],
        "metrics": settlement_metrics(net, transfers),
    }
