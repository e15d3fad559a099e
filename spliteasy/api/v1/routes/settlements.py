from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from spliteasy.db.session import get_db
from spliteasy.core.dependencies import get_current_user
from spliteasy.schemas.settlements import PayRequest, SettlementOut, VersionRequest
from spliteasy.services.settlement_services import confirm_settlement, get_settlement, pay_settlement, undo_settlement

router = APIRouter()

@router.get("/{settlement_id}", response_model=SettlementOut)
async def fetch_settlement(
    settlement_id: int,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user)
):
    return await get_settlement(db, settlement_id, user.id)

@router.post("/{settlement_id}/pay", response_model=SettlementOut)
async def pay(
    settlement_id: int,
    data: PayRequest | None = None,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user)
):
    data = data or PayRequest()
    return await pay_settlement(db, settlement_id, user.id, amount=data.amount, version=data.version)

@router.post("/{settlement_id}/confirm", response_model=SettlementOut)
async def confirm(
    settlement_id: int,
    data: VersionRequest | None = None,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user)
):
    version = data.version if data else None
    return await confirm_settlement(db, settlement_id, user.id, version=version)

@router.post("/{settlement_id}/undo", response_model=SettlementOut)
async def undo(
    settlement_id: int,
    data: VersionRequest | None = None,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user)
):
    version = data.version if data else None
    return await undo_settlement(db, settlement_id, user.id, version=version)
