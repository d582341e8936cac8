from datetime import datetime, timedelta, timezone

import httpx

from redemption_gate.clock import ExpiryClock


class FakeClock(ExpiryClock):
    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 3, 1, 12, 0, 0, 250000, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


def register_coupon(ledger, clock, coupon_id="C1", owner_id="owner-1", merchant_id="merchant-1", days=30):
    return ledger.register(coupon_id, owner_id, merchant_id, clock.now() + timedelta(days=days))


async def issue_ticket(client: httpx.AsyncClient, coupon_id="C1", owner_id="owner-1", merchant_id="merchant-1", **extra) -> dict:
    r = await client.post(
        "/tickets",
        json={"ownerId": owner_id, "couponId": coupon_id, "merchantId": merchant_id, **extra},
    )
    assert r.status_code == 201, r.text
    return r.json()


async def consume(client: httpx.AsyncClient, payload: str, merchant_id="merchant-1", **kwargs) -> httpx.Response:
    return await client.post("/tickets/consume", json={"payload": payload, "merchantId": merchant_id}, **kwargs)
