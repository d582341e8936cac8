import asyncio
import logging
import time

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .clock import ExpiryClock
from .config import (
    REDIS_URL, STORE_TIMEOUT_SECONDS, SWEEP_BATCH_SIZE, SWEEP_INTERVAL_SECONDS, configure_logging,
)
from .db import Base, SessionLocal, engine
from .errors import StoreUnavailable
from .ledger import AssetLedger, CouponLedger
from .reconciliation import LAST_ID_KEY, STREAM, apply_redemption, reconcile_pending
from .store import TicketStore
from .sweeper import ExpirySweeper

log = logging.getLogger(__name__)


async def drain_once(redis, ledger: AssetLedger, last_id: str, block_ms: int) -> str:
    """Apply one batch of redemptions from the stream; returns the new cursor."""
    resp = await redis.xread({STREAM: last_id}, block=block_ms, count=50)
    if not resp:
        return last_id

    _, messages = resp[0]
    for msg_id, data in messages:
        log.info("[worker] syncing decision_id=%s ticket_id=%s", data.get("decision_id"), data.get("ticket_id"))
        await asyncio.to_thread(apply_redemption, ledger, data)
        last_id = msg_id
        await redis.xdel(STREAM, msg_id)

        # persist progress
        await redis.set(LAST_ID_KEY, last_id)
    return last_id


async def main():
    configure_logging()
    Base.metadata.create_all(bind=engine)

    # no socket_timeout here: XREAD blocks on purpose
    redis = Redis.from_url(REDIS_URL, decode_responses=True, socket_connect_timeout=STORE_TIMEOUT_SECONDS)
    store = TicketStore(SessionLocal)
    ledger = CouponLedger(SessionLocal)
    sweeper = ExpirySweeper(store, ExpiryClock())

    # resume where we left off
    last_id = await redis.get(LAST_ID_KEY) or "0-0"
    next_sweep = 0.0
    block_ms = max(100, int(min(SWEEP_INTERVAL_SECONDS, 5.0) * 1000))

    while True:
        if time.monotonic() >= next_sweep:
            try:
                await asyncio.to_thread(sweeper.run_once)
            except StoreUnavailable:
                log.warning("[worker] sweep skipped, store unavailable")
            try:
                await asyncio.to_thread(reconcile_pending, store, ledger, SWEEP_BATCH_SIZE)
            except StoreUnavailable:
                log.warning("[worker] store reconciliation skipped, store unavailable")
            next_sweep = time.monotonic() + SWEEP_INTERVAL_SECONDS

        try:
            last_id = await drain_once(redis, ledger, last_id, block_ms)
        except (StoreUnavailable, RedisError) as e:
            log.warning("[worker] drain failed (%s), retrying from last committed id", e)
            await asyncio.sleep(1.0)
            try:
                last_id = await redis.get(LAST_ID_KEY) or last_id
            except RedisError:
                # replays are harmless, keep the cursor we had
                log.warning("[worker] redis still unavailable")


if __name__ == "__main__":
    asyncio.run(main())
