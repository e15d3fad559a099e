from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from spliteasy.db.session import get_db
from spliteasy.core.dependencies import get_current_user
from spliteasy.schemas.balances import BalanceOut
from spliteasy.services.balance_services import get_group_balances

router = APIRouter()

@router.get("/{group_id}/balances", response_model=list[BalanceOut])
async def group_balances(
    group_id: int,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    return await get_group_balances(db, group_id, current_user.id)
