import hmac
import logging
from dataclasses import dataclass
from datetime import datetime

from .clock import ExpiryClock
from .codec import TicketCodec
from .errors import (
    AlreadyConsumed, MerchantMismatch, NotTicketOwner, TamperedTicket, TicketExpired,
    TicketNotActive, TicketNotFound,
)
from .models import Ticket, TicketStatus
from .store import TicketStore

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsumptionResult:
    ticket_id: str
    coupon_id: str
    owner_id: str
    merchant_id: str
    consumed_at: datetime


class ConsumptionGate:
    """Decides whether a scan succeeds, at most once per ticket.

    Every transition out of ``active`` (consume, lazy expiry, cancel) goes
    through ``TicketStore.conditional_update_status``. A transition that
    matches zero rows lost a race and is reported, never retried.
    """

    def __init__(self, store: TicketStore, codec: TicketCodec, clock: ExpiryClock):
        self.store = store
        self.codec = codec
        self.clock = clock

    def consume(self, payload: str, scanner_merchant_id: str) -> ConsumptionResult:
        decoded = self.codec.decode(payload)

        ticket = self.store.get(decoded.ticket_id)
        if ticket is None:
            raise TicketNotFound(f"ticket {decoded.ticket_id} not found")

        expected = self.codec.hash(ticket.coupon_id, ticket.owner_id, ticket.nonce, ticket.issued_at)
        # both checks always run
        stored_ok = hmac.compare_digest(expected, ticket.ticket_hash)
        payload_ok = hmac.compare_digest(expected, decoded.digest)
        if not (stored_ok and payload_ok):
            log.warning("tampered ticket_id=%s merchant_id=%s", ticket.id, scanner_merchant_id)
            raise TamperedTicket(f"digest mismatch for ticket {ticket.id}")

        if ticket.status != TicketStatus.ACTIVE.value:
            raise TicketNotActive.for_status(ticket.status)

        now = self.clock.now()
        if self.clock.is_past(ticket.expires_at, now):
            self._expire(ticket, now)
            raise TicketExpired(f"ticket {ticket.id} expired at {ticket.expires_at.isoformat()}")

        if scanner_merchant_id != ticket.merchant_id:
            raise MerchantMismatch(f"ticket {ticket.id} is not redeemable at {scanner_merchant_id}")

        if not self.store.conditional_update_status(ticket.id, ticket.version, TicketStatus.CONSUMED, now):
            log.info("lost consume race ticket_id=%s version=%s", ticket.id, ticket.version)
            raise AlreadyConsumed()

        log.info("consumed ticket_id=%s coupon_id=%s merchant_id=%s", ticket.id, ticket.coupon_id, ticket.merchant_id)
        return ConsumptionResult(
            ticket_id=ticket.id,
            coupon_id=ticket.coupon_id,
            owner_id=ticket.owner_id,
            merchant_id=ticket.merchant_id,
            consumed_at=now,
        )

    def cancel(self, owner_id: str, ticket_id: str) -> Ticket:
        ticket = self.store.get(ticket_id)
        if ticket is None:
            raise TicketNotFound(f"ticket {ticket_id} not found")
        if ticket.owner_id != owner_id:
            raise NotTicketOwner(f"ticket {ticket_id} does not belong to {owner_id}")
        if ticket.status != TicketStatus.ACTIVE.value:
            raise TicketNotActive(ticket.status)

        now = self.clock.now()
        if not self.store.conditional_update_status(ticket.id, ticket.version, TicketStatus.CANCELLED, now):
            current = self.store.get(ticket_id)
            raise TicketNotActive(current.status if current else None)

        log.info("cancelled ticket_id=%s coupon_id=%s", ticket.id, ticket.coupon_id)
        return self.store.get(ticket_id)

    def _expire(self, ticket: Ticket, now: datetime) -> None:
        if self.store.conditional_update_status(ticket.id, ticket.version, TicketStatus.EXPIRED, now):
            log.info("lazily expired ticket_id=%s", ticket.id)
