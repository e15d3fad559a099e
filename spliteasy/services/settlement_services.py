import logging
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm.exc import StaleDataError
from spliteasy.core import settlement_state
from spliteasy.core.dependencies import check_group_membership, get_membership
from spliteasy.core.errors import Conflict, InvalidStateTransition, NotFound, Unauthorized, ValidationError
from spliteasy.core.utils import ZERO, qround, simplify_debts
from spliteasy.models.payment import Payment
from spliteasy.models.settlement import Settlement, ACCEPTED, PARTIAL, PENDING, STATUSES
from spliteasy.services.balance_services import get_group_net_map, load_group_settlements

logger = logging.getLogger(__name__)

async def _commit(db: AsyncSession, settlement: Settlement):
    # rollback expires the instance, so read the id first
    settlement_id = settlement.id
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        raise Conflict(f"Settlement {settlement_id} was changed by someone else; reload and retry")
    await db.refresh(settlement)

async def get_settlement_or_404(db: AsyncSession, settlement_id: int) -> Settlement:
    settlement = await db.get(Settlement, settlement_id)
    if not settlement:
        raise NotFound("Settlement not found")
    return settlement

async def get_settlement(db: AsyncSession, settlement_id: int, user_id: int) -> Settlement:
    settlement = await get_settlement_or_404(db, settlement_id)

    if user_id not in (settlement.payer_id, settlement.receiver_id):
        await check_group_membership(db, settlement.group_id, user_id)

    return settlement

async def list_group_settlements(db: AsyncSession, group_id: int, user_id: int, status: str | None = None):
    await check_group_membership(db, group_id, user_id)

    if status is not None and status not in STATUSES:
        raise ValidationError(f"Unknown status {status!r}")

    q = (
        select(Settlement)
        .where(Settlement.group_id == group_id)
        .order_by(Settlement.created_at.desc(), Settlement.id.desc())
    )
    if status is not None:
        q = q.where(Settlement.status == status)

    res = await db.execute(q)
    return res.scalars().all()

async def pay_settlement(db: AsyncSession, settlement_id: int, user_id: int, amount=None, version: int | None = None):
    settlement = await get_settlement_or_404(db, settlement_id)
    settlement_state.check_version(settlement, version)

    applied = settlement_state.apply_payment(settlement, user_id, amount)
    db.add(Payment(settlement_id=settlement.id, amount=applied))

    await _commit(db, settlement)
    return settlement

async def confirm_settlement(db: AsyncSession, settlement_id: int, user_id: int, version: int | None = None):
    settlement = await get_settlement_or_404(db, settlement_id)
    settlement_state.check_version(settlement, version)

    settlement_state.confirm_payment(settlement, user_id)

    await _commit(db, settlement)
    return settlement

async def undo_settlement(db: AsyncSession, settlement_id: int, user_id: int, version: int | None = None):
    settlement = await get_settlement_or_404(db, settlement_id)
    settlement_state.check_version(settlement, version)

    if user_id not in (settlement.payer_id, settlement.receiver_id):
        raise Unauthorized("Only the payer or the receiver can undo a payment")

    res = await db.execute(
        select(Payment)
        .where(Payment.settlement_id == settlement.id)
        .order_by(Payment.id.desc())
        .limit(1)
    )
    last_payment = res.scalar_one_or_none()

    if not last_payment:
        raise InvalidStateTransition("No payment to undo")

    settlement_state.revert_payment(settlement, user_id, last_payment.amount)
    await db.delete(last_payment)

    await _commit(db, settlement)
    return settlement

async def record_settlement(db: AsyncSession, group_id: int, user_id: int, data):
    """Record money that already changed hands; accepted straight away."""
    await check_group_membership(db, group_id, user_id)

    if user_id not in (data.payer_id, data.receiver_id):
        raise Unauthorized("You can only record settlements involving yourself")

    if data.payer_id == data.receiver_id:
        raise ValidationError("A settlement cannot be made to yourself")

    for uid in (data.payer_id, data.receiver_id):
        if not await get_membership(db, group_id, uid):
            raise ValidationError("Both users must be members of the group")

    amount = qround(data.amount)
    if amount <= ZERO:
        raise ValidationError("Amount must be greater than 0")

    settlement = Settlement(
        group_id=group_id,
        payer_id=data.payer_id,
        receiver_id=data.receiver_id,
        total_amount=amount,
        paid_amount=amount,
        status=ACCEPTED,
    )
    db.add(settlement)
    await db.flush()
    db.add(Payment(settlement_id=settlement.id, amount=amount))

    await db.commit()
    await db.refresh(settlement)

    logger.info("settlement %s recorded: %s -> %s %s", settlement.id, data.payer_id, data.receiver_id, amount)
    return settlement

async def optimize_settlements(db: AsyncSession, group_id: int, user_id: int):
    """
    Replace the group's open debts with a fresh greedy set of transfers.

    Pending rows are dropped, partly paid rows are closed down to what was
    paid, and rows awaiting confirmation, paid or accepted are left alone.
    Balances already count every payment made, so the new transfers cover
    exactly what is still owed.
    """
    await check_group_membership(db, group_id, user_id)

    net = await get_group_net_map(db, group_id)
    transfers = simplify_debts(net)

    superseded = 0
    for s in await load_group_settlements(db, group_id):
        if s.status == PENDING:
            await db.delete(s)
            superseded += 1
        elif s.status == PARTIAL:
            settlement_state.close_partial(s)
            superseded += 1

    created = []
    for from_id, to_id, amount in transfers:
        settlement = Settlement(
            group_id=group_id,
            payer_id=from_id,
            receiver_id=to_id,
            total_amount=amount,
            paid_amount=Decimal("0"),
            status=PENDING,
        )
        db.add(settlement)
        created.append(settlement)

    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        raise Conflict("Settlements changed while optimizing; reload and retry")

    for s in created:
        await db.refresh(s)

    logger.info(
        "group %s optimized: %d transfers, %d open settlements superseded",
        group_id, len(created), superseded
    )
    return created
