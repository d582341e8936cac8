from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends

from .audit import recent_decisions
from .deps import get_ledger, get_store, get_sweeper
from .errors import CouponNotFound, InvalidRequest
from .ledger import CouponLedger
from .reconciliation import reconcile_pending
from .schemas import CouponIn, TransferReq
from .store import TicketStore
from .sweeper import ExpirySweeper

router = APIRouter(prefix="/admin", tags=["admin"])


def _coupon_out(c) -> dict:
    return {
        "couponId": c.id,
        "ownerId": c.owner_id,
        "merchantId": c.merchant_id,
        "expiresAt": c.expires_at.isoformat(),
        "isRedeemed": c.is_redeemed,
        "redeemedAt": c.redeemed_at.isoformat() if c.redeemed_at else None,
    }


# -------------------------
# Ledger mirror
# -------------------------
@router.post("/coupons", status_code=201)
def register_coupon(req: CouponIn, ledger: CouponLedger = Depends(get_ledger)):
    try:
        expires_at = datetime.fromisoformat(req.expiresAt)
    except ValueError:
        raise InvalidRequest("expiresAt must be ISO-8601")
    if expires_at.tzinfo is None:
        raise InvalidRequest("expiresAt must carry a UTC offset")
    coupon = ledger.register(req.couponId, req.ownerId, req.merchantId, expires_at)
    return _coupon_out(coupon)


@router.get("/coupons/{coupon_id}")
def get_coupon(coupon_id: str, ledger: CouponLedger = Depends(get_ledger)):
    coupon = ledger.get(coupon_id)
    if coupon is None:
        raise CouponNotFound(f"coupon {coupon_id} not found")
    return _coupon_out(coupon)


@router.post("/coupons/{coupon_id}/transfer")
def transfer_coupon(coupon_id: str, req: TransferReq, ledger: CouponLedger = Depends(get_ledger)):
    if not ledger.transfer(coupon_id, req.newOwnerId):
        raise CouponNotFound(f"coupon {coupon_id} not found or already redeemed")
    return _coupon_out(ledger.get(coupon_id))


# -------------------------
# Expiry sweep + ledger catch-up (on demand)
# -------------------------
@router.post("/sweep")
def sweep(
    sweeper: ExpirySweeper = Depends(get_sweeper),
    store: TicketStore = Depends(get_store),
    ledger: CouponLedger = Depends(get_ledger),
):
    return {"expired": sweeper.run_once(), "reconciled": reconcile_pending(store, ledger)}


# -------------------------
# Logs
# -------------------------
@router.get("/audit")
def get_audit(limit: int = 80, ticket_id: Optional[str] = None):
    rows = recent_decisions(limit=min(limit, 500), ticket_id=ticket_id)
    return [
        {
            "created_at": row.created_at.isoformat(),
            "decision_id": row.decision_id,
            "action": row.action,
            "actor_id": row.actor_id,
            "ticket_id": row.ticket_id,
            "status": row.status,
            "reason_code": row.reason_code,
        }
        for row in rows
    ]
