import asyncio

import pytest

from tests.helpers import consume, issue_ticket, register_coupon

pytestmark = pytest.mark.asyncio


async def test_replay_basic(client, ledger, clock):
    register_coupon(ledger, clock)
    issued = await issue_ticket(client)
    payload = issued["qrPayload"]

    r1 = await consume(client, payload)
    assert r1.status_code == 200, r1.text
    assert r1.json()["couponId"] == "C1"
    assert r1.json()["ownerId"] == "owner-1"

    r2 = await consume(client, payload)
    assert r2.status_code == 409
    assert r2.json()["error"] == "AlreadyConsumed"
    assert r2.json()["status"] == "consumed"


async def test_concurrent_scan_one_wins(client, ledger, clock):
    register_coupon(ledger, clock)
    payload = (await issue_ticket(client))["qrPayload"]

    async def one():
        return await consume(client, payload)

    results = await asyncio.gather(*[one() for _ in range(10)])
    accepted = [r for r in results if r.status_code == 200]
    rejected = [r for r in results if r.status_code != 200]

    assert len(accepted) == 1, f"Expected exactly 1 accepted, got {len(accepted)}"
    assert len(rejected) == 9
    assert all(r.json()["error"] == "AlreadyConsumed" for r in rejected)


async def test_concurrent_issue_one_wins(client, ledger, clock):
    register_coupon(ledger, clock)

    async def one():
        return await client.post("/tickets", json={"ownerId": "owner-1", "couponId": "C1", "merchantId": "merchant-1"})

    results = await asyncio.gather(*[one() for _ in range(6)])
    assert sorted(r.status_code for r in results) == [201] + [409] * 5
    assert {r.json()["error"] for r in results if r.status_code == 409} == {"TicketAlreadyActive"}


async def test_late_scan_is_gone_and_recorded_expired(client, ledger, clock):
    register_coupon(ledger, clock)
    issued = await issue_ticket(client, ttlSeconds=120)

    clock.advance(121)
    r = await consume(client, issued["qrPayload"])
    assert r.status_code == 410
    assert r.json()["error"] == "TicketExpired"

    t = (await client.get(f"/tickets/{issued['ticket']['id']}")).json()
    assert t["status"] == "expired"
    assert t["consumedAt"] is None
