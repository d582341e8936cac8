import logging
import secrets
import uuid
from datetime import timedelta

from .clock import ExpiryClock
from .codec import TicketCodec
from .config import MAX_TICKET_TTL_SECONDS, TICKET_TTL_SECONDS
from .errors import CouponNotOwned, InvalidRequest
from .ledger import AssetLedger
from .models import Ticket, TicketStatus
from .store import TicketStore

log = logging.getLogger(__name__)


def _check_location(location: dict | None) -> dict:
    if not location:
        return {}
    lat = location.get("latitude")
    lon = location.get("longitude")
    if lat is not None and not -90.0 <= lat <= 90.0:
        raise InvalidRequest("latitude must be within [-90, 90]")
    if lon is not None and not -180.0 <= lon <= 180.0:
        raise InvalidRequest("longitude must be within [-180, 180]")
    return {"latitude": lat, "longitude": lon, "address": location.get("address")}


class TicketIssuer:
    def __init__(
        self,
        store: TicketStore,
        ledger: AssetLedger,
        codec: TicketCodec,
        clock: ExpiryClock,
        default_ttl: timedelta = timedelta(seconds=TICKET_TTL_SECONDS),
        max_ttl: timedelta = timedelta(seconds=MAX_TICKET_TTL_SECONDS),
    ):
        self.store = store
        self.ledger = ledger
        self.codec = codec
        self.clock = clock
        self.default_ttl = default_ttl
        self.max_ttl = max_ttl

    def issue(
        self,
        owner_id: str,
        coupon_id: str,
        merchant_id: str,
        ttl: timedelta | None = None,
        location: dict | None = None,
    ) -> Ticket:
        """Issue a fresh active ticket for a coupon the caller owns.

        Raises CouponNotOwned when the ledger does not show ``owner_id`` holding
        a redeemable coupon at ``merchant_id``, and TicketAlreadyActive when the
        store already holds a live ticket for the coupon. The second check is
        the store's unique index, not a lookup, so concurrent requests cannot
        both succeed.
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= timedelta(0) or ttl > self.max_ttl:
            raise InvalidRequest(f"ttl must be between 1s and {int(self.max_ttl.total_seconds())}s")
        loc = _check_location(location)

        now = self.clock.now()
        if not self.ledger.is_redeemable(owner_id, coupon_id, merchant_id, now):
            raise CouponNotOwned(f"coupon {coupon_id} is not redeemable by {owner_id}")

        nonce = secrets.token_hex(16)
        ticket = Ticket(
            id=str(uuid.uuid4()),
            coupon_id=coupon_id,
            owner_id=owner_id,
            merchant_id=merchant_id,
            nonce=nonce,
            ticket_hash=self.codec.hash(coupon_id, owner_id, nonce, now),
            status=TicketStatus.ACTIVE.value,
            issued_at=now,
            expires_at=now + ttl,
            consumed_at=None,
            version=0,
            updated_at=now,
            **loc,
        )
        ticket = self.store.create(ticket)
        log.info("issued ticket_id=%s coupon_id=%s owner_id=%s expires_at=%s",
                 ticket.id, coupon_id, owner_id, ticket.expires_at.isoformat())
        return ticket
