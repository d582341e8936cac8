import pytest

from redemption_gate import main
from redemption_gate.rate_limit import token_bucket
from tests.helpers import consume, register_coupon

pytestmark = pytest.mark.asyncio


async def test_rate_limit_kicks_in(client, monkeypatch):
    monkeypatch.setattr(main, "SCAN_RATE_LIMIT_PER_MIN", 3)

    hits = []
    for _ in range(5):
        # invalid payloads so nothing is redeemed
        r = await consume(client, "definitely-not-a-payload")
        hits.append(r)

    assert [r.status_code for r in hits[:3]] == [400, 400, 400]
    assert any(r.status_code == 429 and r.json()["error"] == "RateLimited" for r in hits)
    assert all(r.json()["retryable"] for r in hits if r.status_code == 429)


async def test_token_bucket_refills(redis):
    for _ in range(2):
        assert await token_bucket(redis, "k", capacity=2, refill_per_sec=1.0, now=1000.0)
    assert not await token_bucket(redis, "k", capacity=2, refill_per_sec=1.0, now=1000.0)
    assert await token_bucket(redis, "k", capacity=2, refill_per_sec=1.0, now=1001.5)


async def test_idempotency_returns_same_cached_response(client, ledger, clock):
    register_coupon(ledger, clock)
    body = {"ownerId": "owner-1", "couponId": "C1", "merchantId": "merchant-1"}

    key = "idem-demo-123"
    r1 = await client.post("/tickets", json=body, headers={"Idempotency-Key": key})
    r2 = await client.post("/tickets", json=body, headers={"Idempotency-Key": key})

    assert r1.status_code == r2.status_code == 201
    j1, j2 = r1.json(), r2.json()
    assert j1 == j2, f"Expected exact cached response, got diff: {j1} vs {j2}"


async def test_retry_without_key_is_rejected(client, ledger, clock):
    register_coupon(ledger, clock)
    body = {"ownerId": "owner-1", "couponId": "C1", "merchantId": "merchant-1"}

    assert (await client.post("/tickets", json=body)).status_code == 201
    r = await client.post("/tickets", json=body)
    assert r.status_code == 409
    assert r.json()["error"] == "TicketAlreadyActive"


async def test_failed_issue_is_not_cached(client, ledger, clock):
    body = {"ownerId": "owner-1", "couponId": "C1", "merchantId": "merchant-1"}
    headers = {"Idempotency-Key": "idem-late-coupon"}

    r1 = await client.post("/tickets", json=body, headers=headers)
    assert r1.status_code == 409
    assert r1.json()["error"] == "CouponNotOwned"

    # the ledger catches up, the retry with the same key now goes through
    register_coupon(ledger, clock)
    r2 = await client.post("/tickets", json=body, headers=headers)
    assert r2.status_code == 201
