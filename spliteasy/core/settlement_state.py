"""
Settlement state machine.

    pending --pay--> partial --pay--> awaiting_confirmation --confirm--> paid
       |                                      ^
       +------------------pay (full)----------+

``undo`` walks a payment back from partial, awaiting_confirmation or paid.
``accepted`` is terminal and only produced by recording a payment that both
sides already agree on.

These functions only mutate the settlement object; persisting it (and the
matching Payment rows) is the service's job.
"""
import logging
from decimal import Decimal

from spliteasy.core.errors import Conflict, InvalidStateTransition, Unauthorized, ValidationError
from spliteasy.core.utils import ZERO, is_settled, qround
from spliteasy.models.settlement import (
    AWAITING_CONFIRMATION,
    PAID,
    PARTIAL,
    PENDING,
    UNPAID_STATUSES,
)

logger = logging.getLogger(__name__)

UNDOABLE_STATUSES = (PARTIAL, AWAITING_CONFIRMATION, PAID)

def check_version(settlement, version: int | None):
    if version is not None and version != settlement.version:
        raise Conflict(
            f"Settlement {settlement.id} changed since it was read "
            f"(version {version}, now {settlement.version})"
        )

def apply_payment(settlement, actor_id: int, amount=None) -> Decimal:
    """Record a payment from the payer. Returns the amount actually applied."""
    if actor_id != settlement.payer_id:
        raise Unauthorized("Only the payer can pay this settlement")

    if settlement.status not in UNPAID_STATUSES:
        raise InvalidStateTransition(f"Cannot pay a settlement that is {settlement.status}")

    remaining = qround(settlement.remaining_amount)
    amount = remaining if amount is None else qround(amount)

    if amount <= ZERO:
        raise ValidationError("Amount must be greater than 0")
    if amount > remaining:
        raise ValidationError(f"Amount exceeds remaining amount ({remaining})")

    # leftover under a cent is swallowed by the payment that clears the debt
    if is_settled(remaining - amount):
        amount = remaining

    settlement.paid_amount = qround(settlement.paid_amount + amount)

    if is_settled(settlement.remaining_amount):
        settlement.paid_amount = qround(settlement.total_amount)
        settlement.status = AWAITING_CONFIRMATION
    else:
        settlement.status = PARTIAL

    logger.info("settlement %s paid %s -> %s", settlement.id, amount, settlement.status)
    return amount

def confirm_payment(settlement, actor_id: int):
    if actor_id != settlement.receiver_id:
        raise Unauthorized("Only the receiver can confirm this payment")

    if settlement.status != AWAITING_CONFIRMATION:
        raise InvalidStateTransition("Settlement is not awaiting confirmation")

    settlement.paid_amount = qround(settlement.total_amount)
    settlement.status = PAID

    logger.info("settlement %s confirmed by %s", settlement.id, actor_id)

def revert_payment(settlement, actor_id: int, amount) -> None:
    """Take back the most recent payment of ``amount``."""
    if actor_id not in (settlement.payer_id, settlement.receiver_id):
        raise Unauthorized("Only the payer or the receiver can undo a payment")

    if settlement.status not in UNDOABLE_STATUSES:
        raise InvalidStateTransition(f"Cannot undo a settlement that is {settlement.status}")

    paid = qround(settlement.paid_amount - qround(amount))
    if paid < ZERO:
        # payments and paid_amount disagree; refuse rather than go negative
        raise Conflict(f"Settlement {settlement.id} payment history is inconsistent")

    settlement.paid_amount = paid
    settlement.status = PENDING if is_settled(paid) else PARTIAL
    if settlement.status == PENDING:
        settlement.paid_amount = ZERO

    logger.info("settlement %s undo %s -> %s", settlement.id, amount, settlement.status)

def close_partial(settlement) -> None:
    """
    Shrink a partly paid settlement to what was paid so far.

    Used when a fresh optimisation replaces the unpaid remainder; the receiver
    still has to confirm the money that did change hands.
    """
    if settlement.status != PARTIAL:
        raise InvalidStateTransition(f"Cannot close a settlement that is {settlement.status}")

    settlement.total_amount = qround(settlement.paid_amount)
    settlement.status = AWAITING_CONFIRMATION
