from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP, getcontext
from typing import Dict, Iterable, List, Tuple

getcontext().prec = 28
CENTS = Decimal("0.01")
# Anything closer to zero than this counts as settled
EPSILON = Decimal("0.01")
ZERO = Decimal("0")

def qround(d) -> Decimal:
    if not isinstance(d, Decimal):
        d = Decimal(str(d))
    return d.quantize(CENTS, rounding=ROUND_HALF_UP)

def is_settled(amount: Decimal) -> bool:
    return abs(amount) < EPSILON

def equal_shares(amount: Decimal, user_ids: Iterable[int]) -> Dict[int, Decimal]:
    """
    Split ``amount`` evenly between ``user_ids``.

    Shares are floored to cents and the leftover cents go one each to the
    lowest user ids, so the shares always add up to ``amount`` exactly.
    """
    ids = sorted(set(user_ids))
    if not ids:
        return {}

    amount = qround(amount)
    base = (amount / len(ids)).quantize(CENTS, rounding=ROUND_DOWN)
    leftover = int((amount - base * len(ids)) / CENTS)

    return {
        uid: base + (CENTS if i < leftover else ZERO)
        for i, uid in enumerate(ids)
    }

def compute_net_balances(expenses, settlements, member_ids: Iterable[int]) -> List[dict]:
    """
    Net balance per user from a group's expenses and settlement payments.

    Positive means the user is owed money, negative means they owe.
    ``expenses`` need ``payer_id``, ``amount``, ``is_deleted`` and ``splits``
    (each with ``user_id`` and ``share_amount``). ``settlements`` need ``payer_id``,
    ``receiver_id`` and ``paid_amount``; only what has actually been paid
    moves balance, so pending rows contribute nothing.

    Users that show up in the data without being members are still reported,
    flagged with ``is_member=False``.
    """
    members = set(member_ids)
    net: Dict[int, Decimal] = {uid: ZERO for uid in members}

    for e in expenses:
        if getattr(e, "is_deleted", False):
            continue

        net[e.payer_id] = net.get(e.payer_id, ZERO) + Decimal(str(e.amount))
        for s in e.splits:
            net[s.user_id] = net.get(s.user_id, ZERO) - Decimal(str(s.share_amount))

    for s in settlements:
        paid = Decimal(str(s.paid_amount or 0))
        if paid == ZERO:
            continue
        net[s.payer_id] = net.get(s.payer_id, ZERO) + paid
        net[s.receiver_id] = net.get(s.receiver_id, ZERO) - paid

    return [
        {
            "user_id": uid,
            "balance": qround(net[uid]),
            "is_member": uid in members,
        }
        for uid in sorted(net)
    ]

def simplify_debts(net_map: Dict[int, Decimal]) -> List[Tuple[int, int, Decimal]]:
    """
    Greedy largest-first matching of debtors against creditors.

    Returns ``(from_id, to_id, amount)`` transfers. Both sides are ordered by
    descending amount with ties broken by ascending user id, so the same
    input always yields the same transfers.
    """
    creditors = []
    debtors = []

    for uid, bal in net_map.items():
        bal = qround(bal)
        if is_settled(bal):
            continue
        if bal > 0:
            creditors.append([uid, bal])
        else:
            debtors.append([uid, -bal])

    transfers: List[Tuple[int, int, Decimal]] = []

    while creditors and debtors:
        # A partly matched party may no longer be the largest
        creditors.sort(key=_largest_first)
        debtors.sort(key=_largest_first)

        cred_id, cred_amt = creditors.pop(0)
        debt_id, debt_amt = debtors.pop(0)

        pay_amt = qround(min(cred_amt, debt_amt))

        transfers.append((debt_id, cred_id, pay_amt))

        new_cred = qround(cred_amt - pay_amt)
        new_debt = qround(debt_amt - pay_amt)

        if not is_settled(new_cred):
            creditors.append([cred_id, new_cred])
        if not is_settled(new_debt):
            debtors.append([debt_id, new_debt])
    return transfers

def _largest_first(entry):
    uid, amount = entry
    return (-amount, uid)

def settlement_metrics(net_map: Dict[int, Decimal], transfers) -> dict:
    total_debt = sum((-b for b in net_map.values() if b < 0), ZERO)
    total_credit = sum((b for b in net_map.values() if b > 0), ZERO)
    settled = sum((a for _, _, a in transfers), ZERO)

    return {
        "total_debt": qround(total_debt),
        "total_credit": qround(total_credit),
        "settled_amount": qround(settled),
        "number_of_transfers": len(transfers),
    }
