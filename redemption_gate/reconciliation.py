import logging
from datetime import datetime

from .gate import ConsumptionResult
from .ledger import AssetLedger
from .store import TicketStore

log = logging.getLogger(__name__)

STREAM = "ledger_reconciliation"
LAST_ID_KEY = "worker:last_id"


async def publish_redemption(redis, result: ConsumptionResult, decision_id: str) -> str:
    return await redis.xadd(
        STREAM,
        {
            "decision_id": decision_id,
            "ticket_id": result.ticket_id,
            "coupon_id": result.coupon_id,
            "owner_id": result.owner_id,
            "merchant_id": result.merchant_id,
            "consumed_at": result.consumed_at.isoformat(),
        },
    )


def apply_redemption(ledger: AssetLedger, data: dict) -> bool:
    """Burn the coupon on the ledger side. False when it was already redeemed."""
    coupon_id = data["coupon_id"]
    redeemed_at = datetime.fromisoformat(data["consumed_at"])
    applied = ledger.record_redemption(coupon_id, redeemed_at)
    if applied:
        log.info("reconciled coupon_id=%s ticket_id=%s", coupon_id, data.get("ticket_id"))
    else:
        log.warning("replay_on_sync coupon_id=%s ticket_id=%s", coupon_id, data.get("ticket_id"))
    return applied


def reconcile_pending(store: TicketStore, ledger: AssetLedger, limit: int = 200) -> int:
    """Burn coupons for consumed tickets the stream never delivered.

    Covers a lost publish or a crash between the consume commit and the XADD;
    the ledger's replay-safe update makes overlap with the stream harmless.
    """
    burned = 0
    for ticket_id, coupon_id, consumed_at in store.list_unreconciled(limit):
        if ledger.record_redemption(coupon_id, consumed_at):
            burned += 1
            log.info("reconciled from store coupon_id=%s ticket_id=%s", coupon_id, ticket_id)
    return burned
