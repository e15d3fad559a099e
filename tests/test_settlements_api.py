from sqlalchemy import select

from spliteasy.models.payment import Payment
from tests.conftest import auth

async def add_dinner(client, group, users, amount=90):
    """alice pays ``amount`` split equally between alice, bob and carol."""
    res = await client.post(
        "/api/v1/expense/",
        json={"groupId": group["id"], "amount": amount, "description": "dinner", "splitType": "equal"},
        headers=auth(users["alice"].id),
    )
    assert res.status_code == 201, res.text
    return res.json()

async def optimize(client, group, user):
    res = await client.post(f"/api/v1/groups/{group['id']}/settlements/optimize", headers=auth(user.id))
    assert res.status_code == 200, res.text
    return res.json()

def by_payer(settlements):
    return {s["payerId"]: s for s in settlements}

async def test_balances_after_dinner(client, group, users):
    await add_dinner(client, group, users)

    res = await client.get(f"/api/v1/settle/{group['id']}/balances", headers=auth(users["bob"].id))
    assert res.status_code == 200
    balances = {row["userId"]: row["balance"] for row in res.json()}

    assert balances == {users["alice"].id: 60.0, users["bob"].id: -30.0, users["carol"].id: -30.0}

async def test_balances_require_membership(client, group, users):
    res = await client.get(f"/api/v1/settle/{group['id']}/balances", headers=auth(users["dave"].id))
    assert res.status_code == 403
    assert res.json()["code"] == "unauthorized"

async def test_suggested_settlements_preview(client, group, users):
    await add_dinner(client, group, users)

    res = await client.get(f"/api/v1/groups/{group['id']}/settlements/suggested", headers=auth(users["alice"].id))
    assert res.status_code == 200
    body = res.json()

    assert body["transfers"] == [
        {"fromId": users["bob"].id, "toId": users["alice"].id, "amount": 30.0},
        {"fromId": users["carol"].id, "toId": users["alice"].id, "amount": 30.0},
    ]
    assert body["metrics"]["numberOfTransfers"] == 2
    assert body["metrics"]["settledAmount"] == 60.0

    # a preview writes nothing
    res = await client.get(f"/api/v1/groups/{group['id']}/settlements", headers=auth(users["alice"].id))
    assert res.json() == []

async def test_optimize_creates_pending_transfers(client, group, users):
    await add_dinner(client, group, users)

    created = await optimize(client, group, users["alice"])

    assert len(created) == 2
    rows = by_payer(created)
    for name in ("bob", "carol"):
        s = rows[users[name].id]
        assert s["receiverId"] == users["alice"].id
        assert s["totalAmount"] == 30.0
        assert s["paidAmount"] == 0.0
        assert s["remainingAmount"] == 30.0
        assert s["rawStatus"] == "pending"

async def test_optimize_twice_gives_the_same_open_set(client, group, users):
    await add_dinner(client, group, users)

    first = await optimize(client, group, users["alice"])
    second = await optimize(client, group, users["bob"])

    def shape(rows):
        return sorted((s["payerId"], s["receiverId"], s["totalAmount"]) for s in rows)

    assert shape(first) == shape(second)

    res = await client.get(
        f"/api/v1/groups/{group['id']}/settlements",
        params={"status": "pending"},
        headers=auth(users["alice"].id),
    )
    assert shape(res.json()) == shape(second)

async def test_pay_confirm_flow(client, group, users):
    await add_dinner(client, group, users)
    bob_settlement = by_payer(await optimize(client, group, users["alice"]))[users["bob"].id]
    sid = bob_settlement["id"]

    res = await client.post(f"/api/v1/settlements/{sid}/pay", json={"amount": 10}, headers=auth(users["bob"].id))
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["rawStatus"] == "partial"
    assert body["paidAmount"] == 10.0
    assert body["remainingAmount"] == 20.0

    # paid money shows in the balances straight away
    res = await client.get(f"/api/v1/settle/{group['id']}/balances", headers=auth(users["bob"].id))
    balances = {row["userId"]: row["balance"] for row in res.json()}
    assert balances[users["bob"].id] == -20.0
    assert balances[users["alice"].id] == 50.0

    res = await client.post(f"/api/v1/settlements/{sid}/pay", headers=auth(users["bob"].id))
    assert res.json()["rawStatus"] == "awaiting_confirmation"
    assert res.json()["remainingAmount"] == 0.0

    res = await client.post(f"/api/v1/settlements/{sid}/confirm", headers=auth(users["alice"].id))
    assert res.status_code == 200
    assert res.json()["rawStatus"] == "paid"

async def test_pay_errors(client, group, users):
    await add_dinner(client, group, users)
    sid = by_payer(await optimize(client, group, users["alice"]))[users["bob"].id]["id"]

    res = await client.post(f"/api/v1/settlements/{sid}/pay", json={"amount": 150}, headers=auth(users["bob"].id))
    assert res.status_code == 422
    assert res.json()["code"] == "validation_error"

    res = await client.post(f"/api/v1/settlements/{sid}/pay", json={"amount": 5}, headers=auth(users["carol"].id))
    assert res.status_code == 403
    assert res.json()["code"] == "unauthorized"

    res = await client.post(f"/api/v1/settlements/{sid}/confirm", headers=auth(users["alice"].id))
    assert res.status_code == 409
    assert res.json()["code"] == "invalid_state_transition"

    res = await client.post("/api/v1/settlements/9999/pay", headers=auth(users["bob"].id))
    assert res.status_code == 404

async def test_stale_version_is_rejected(client, group, users):
    await add_dinner(client, group, users)
    s = by_payer(await optimize(client, group, users["alice"]))[users["bob"].id]

    res = await client.post(
        f"/api/v1/settlements/{s['id']}/pay",
        json={"amount": 5, "version": s["version"]},
        headers=auth(users["bob"].id),
    )
    assert res.status_code == 200
    assert res.json()["version"] == s["version"] + 1

    # second writer still holds the old version
    res = await client.post(
        f"/api/v1/settlements/{s['id']}/pay",
        json={"amount": 5, "version": s["version"]},
        headers=auth(users["bob"].id),
    )
    assert res.status_code == 409
    assert res.json()["code"] == "conflict"

async def test_undo_pops_the_last_payment(client, db, group, users):
    await add_dinner(client, group, users)
    sid = by_payer(await optimize(client, group, users["alice"]))[users["bob"].id]["id"]
    bob = auth(users["bob"].id)

    await client.post(f"/api/v1/settlements/{sid}/pay", json={"amount": 10}, headers=bob)
    await client.post(f"/api/v1/settlements/{sid}/pay", json={"amount": 5}, headers=bob)

    res = await client.post(f"/api/v1/settlements/{sid}/undo", headers=auth(users["alice"].id))
    assert res.status_code == 200
    assert res.json()["rawStatus"] == "partial"
    assert res.json()["paidAmount"] == 10.0

    res = await client.post(f"/api/v1/settlements/{sid}/undo", headers=bob)
    assert res.json()["rawStatus"] == "pending"
    assert res.json()["paidAmount"] == 0.0

    payments = (await db.execute(select(Payment).where(Payment.settlement_id == sid))).scalars().all()
    assert payments == []

    res = await client.post(f"/api/v1/settlements/{sid}/undo", headers=bob)
    assert res.status_code == 409

async def test_reoptimize_keeps_paid_and_closes_partial(client, group, users):
    await add_dinner(client, group, users)
    rows = by_payer(await optimize(client, group, users["alice"]))
    bob_sid = rows[users["bob"].id]["id"]
    carol_sid = rows[users["carol"].id]["id"]

    await client.post(f"/api/v1/settlements/{bob_sid}/pay", headers=auth(users["bob"].id))
    await client.post(f"/api/v1/settlements/{bob_sid}/confirm", headers=auth(users["alice"].id))
    await client.post(f"/api/v1/settlements/{carol_sid}/pay", json={"amount": 10}, headers=auth(users["carol"].id))

    created = await optimize(client, group, users["alice"])
    assert [(s["payerId"], s["totalAmount"]) for s in created] == [(users["carol"].id, 20.0)]

    res = await client.get(f"/api/v1/settlements/{bob_sid}", headers=auth(users["bob"].id))
    assert res.json()["rawStatus"] == "paid"
    assert res.json()["totalAmount"] == 30.0

    res = await client.get(f"/api/v1/settlements/{carol_sid}", headers=auth(users["carol"].id))
    assert res.json()["rawStatus"] == "awaiting_confirmation"
    assert res.json()["totalAmount"] == 10.0

async def test_record_settlement_is_accepted(client, group, users):
    await add_dinner(client, group, users)

    res = await client.post(
        f"/api/v1/groups/{group['id']}/settlements/record",
        json={"payerId": users["bob"].id, "receiverId": users["alice"].id, "amount": 30},
        headers=auth(users["bob"].id),
    )
    assert res.status_code == 201, res.text
    assert res.json()["rawStatus"] == "accepted"

    res = await client.get(f"/api/v1/settle/{group['id']}/balances", headers=auth(users["bob"].id))
    balances = {row["userId"]: row["balance"] for row in res.json()}
    assert balances[users["bob"].id] == 0.0

    created = await optimize(client, group, users["alice"])
    assert [(s["payerId"], s["totalAmount"]) for s in created] == [(users["carol"].id, 30.0)]

async def test_record_settlement_rules(client, group, users):
    url = f"/api/v1/groups/{group['id']}/settlements/record"

    res = await client.post(
        url,
        json={"payerId": users["bob"].id, "receiverId": users["alice"].id, "amount": 5},
        headers=auth(users["carol"].id),
    )
    assert res.status_code == 403

    res = await client.post(
        url,
        json={"payerId": users["bob"].id, "receiverId": users["dave"].id, "amount": 5},
        headers=auth(users["bob"].id),
    )
    assert res.status_code == 422

async def test_unknown_status_filter(client, group, users):
    res = await client.get(
        f"/api/v1/groups/{group['id']}/settlements",
        params={"status": "nope"},
        headers=auth(users["alice"].id),
    )
    assert res.status_code == 422
