from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from spliteasy.db.session import get_db
from spliteasy.core.dependencies import get_current_user
from spliteasy.services.group_services import (
    create_group, add_member, list_group_for_user, list_group_members, remove_member, edit_group, get_group,
    delete_group, leave_group, set_member_admin,
)
from spliteasy.services.expense_services import list_group_expenses
from spliteasy.services.balance_services import get_suggested_settlements
from spliteasy.services.settlement_services import list_group_settlements, optimize_settlements, record_settlement
from spliteasy.schemas.group import GroupCreate, GroupEdit, GroupMemberOut, GroupOut, MemberAdminUpdate
from spliteasy.schemas.expense import ExpenseOut
from spliteasy.schemas.settlements import SettlementOut, SettlementRecord, SuggestedSettlementsOut

router = APIRouter()

@router.post("/", response_model=GroupOut, status_code=201, description="create new group")
async def create_new_group(
    data: GroupCreate,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user)
):
    return await create_group(db, data.title, data.currency, user.id)

@router.get("/my-groups", response_model=list[GroupOut], description="get user groups")
async def my_groups(db: AsyncSession = Depends(get_db), user = Depends(get_current_user)):
    return await list_group_for_user(db, user.id)

@router.get("/{group_id}", response_model=GroupOut)
async def fetch_group(group_id: int, db: AsyncSession = Depends(get_db), user = Depends(get_current_user)):
    return await get_group(db, group_id, user.id)

@router.patch("/{group_id}", response_model=GroupOut)
async def edit(group_id: int, data: GroupEdit, db: AsyncSession = Depends(get_db), current_user = Depends(get_current_user)):
    return await edit_group(db, group_id, current_user.id, data)

@router.post("/{group_id}/add/{user_id}", response_model=GroupMemberOut, status_code=201)
async def add_user_to_group(
    group_id: int,
    user_id: int,
    is_admin: bool = False,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    return await add_member(db, group_id, user_id, current_user.id, is_admin=is_admin)

@router.delete("/{group_id}/remove/{user_id}")
async def rem_mem(group_id: int, user_id: int, db: AsyncSession = Depends(get_db), current_user = Depends(get_current_user)):
    return await remove_member(db, group_id=group_id, user_id=user_id, admin_id=current_user.id)

@router.delete("/{group_id}", description="owner only; the group must have no expenses")
async def remove_group(group_id: int, db: AsyncSession = Depends(get_db), current_user = Depends(get_current_user)):
    return await delete_group(db, group_id, current_user.id)

@router.post("/{group_id}/leave")
async def leave(group_id: int, db: AsyncSession = Depends(get_db), current_user = Depends(get_current_user)):
    return await leave_group(db, group_id, current_user.id)

@router.put("/{group_id}/members/{user_id}", response_model=GroupMemberOut, description="grant or revoke admin")
async def update_member(
    group_id: int,
    user_id: int,
    data: MemberAdminUpdate,
    db: AsyncSession = Depends(get_db),
    current_user = Depends(get_current_user)
):
    return await set_member_admin(db, group_id, user_id, current_user.id, data.is_admin)

@router.get("/{group_id}/group-members", response_model=list[GroupMemberOut])
async def group_members(group_id: int, db: AsyncSession = Depends(get_db), current_user = Depends(get_current_user)):
    return await list_group_members(db, current_user.id, group_id=group_id)

@router.get("/{group_id}/expenses", response_model=list[ExpenseOut], description="get all expenses of the group")
async def fetch_expenses(
    group_id: int,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user)
):
    return await list_group_expenses(db, user.id, group_id)

@router.get("/{group_id}/settlements", response_model=list[SettlementOut])
async def get_group_settlements(
    group_id: int,
    status: str | None = None,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user)
):
    return await list_group_settlements(db, group_id, user.id, status=status)

@router.get("/{group_id}/settlements/suggested", response_model=SuggestedSettlementsOut)
async def suggested_settlements(
    group_id: int,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user)
):
    return await get_suggested_settlements(db, group_id, user.id)

@router.post("/{group_id}/settlements/optimize", response_model=list[SettlementOut])
async def optimize(
    group_id: int,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user)
):
    return await optimize_settlements(db, group_id, user.id)

@router.post("/{group_id}/settlements/record", response_model=SettlementOut, status_code=201)
async def add_manual_settlement(
    group_id: int,
    data: SettlementRecord,
    db: AsyncSession = Depends(get_db),
    user = Depends(get_current_user)
):
    return await record_settlement(db, group_id, user.id, data)
