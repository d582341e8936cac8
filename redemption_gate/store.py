import logging
from contextlib import contextmanager
from datetime import datetime

from redis.exceptions import RedisError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from .errors import StoreUnavailable, TicketAlreadyActive
from .models import Coupon, Ticket, TicketStatus

log = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100


@contextmanager
def store_call(what: str):
    try:
        yield
    except (OperationalError, PoolTimeoutError) as e:
        log.warning("store unavailable during %s: %s", what, e)
        raise StoreUnavailable(f"ticket store unavailable during {what}") from e


@contextmanager
def redis_call(what: str):
    """Same mapping for the Redis side (rate limit, idempotency cache)."""
    try:
        yield
    except RedisError as e:
        log.warning("redis unavailable during %s: %s", what, e)
        raise StoreUnavailable(f"redis unavailable during {what}") from e


class TicketStore:
    """Durable ticket storage.

    Every write goes through ``session_factory`` (the primary). Listings may
    be served by ``read_session_factory``, a replica that can lag; ``get`` is
    always answered by the primary because the gate's compare-and-swap needs
    the current version.
    """

    def __init__(self, session_factory, read_session_factory=None):
        self._session_factory = session_factory
        self._read_session_factory = read_session_factory or session_factory

    def create(self, ticket: Ticket) -> Ticket:
        with store_call("create"), self._session_factory() as db:
            db.add(ticket)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                # id and hash are random; the partial unique index on
                # (coupon_id WHERE status='active') is the constraint that fires
                raise TicketAlreadyActive(
                    f"coupon {ticket.coupon_id} already has an active ticket"
                ) from e
            return ticket

    def get(self, ticket_id: str) -> Ticket | None:
        with store_call("get"), self._session_factory() as db:
            return db.get(Ticket, ticket_id)

    def conditional_update_status(
        self,
        ticket_id: str,
        expected_version: int,
        new_status: TicketStatus,
        at: datetime,
    ) -> bool:
        """Move an active ticket to ``new_status`` if nobody else moved it first.

        Applies only while the row is still ``active`` at ``expected_version``.
        Returns False when zero rows matched, i.e. a concurrent caller won.
        """
        if new_status is TicketStatus.ACTIVE:
            raise ValueError("tickets never transition back to active")

        values = {"status": new_status.value, "version": Ticket.version + 1, "updated_at": at}
        if new_status is TicketStatus.CONSUMED:
            values["consumed_at"] = at

        stmt = (
            update(Ticket)
            .where(
                Ticket.id == ticket_id,
                Ticket.status == TicketStatus.ACTIVE.value,
                Ticket.version == expected_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with store_call("conditional update"), self._session_factory() as db:
            result = db.execute(stmt)
            db.commit()
            return result.rowcount == 1

    def list_by_owner(self, owner_id: str, status: str | None = None, limit: int = MAX_LIST_LIMIT) -> list[Ticket]:
        return self._list(Ticket.owner_id == owner_id, status, limit)

    def list_by_merchant(self, merchant_id: str, status: str | None = None, limit: int = MAX_LIST_LIMIT) -> list[Ticket]:
        return self._list(Ticket.merchant_id == merchant_id, status, limit)

    def _list(self, criterion, status, limit) -> list[Ticket]:
        q = select(Ticket).where(criterion)
        if status:
            q = q.where(Ticket.status == status)
        q = q.order_by(Ticket.issued_at.desc()).limit(max(1, min(limit, MAX_LIST_LIMIT)))
        with store_call("list"), self._read_session_factory() as db:
            return list(db.execute(q).scalars().all())

    def list_overdue(self, now: datetime, limit: int) -> list[tuple[str, int]]:
        """(id, version) of active tickets whose window closed before ``now``."""
        q = (
            select(Ticket.id, Ticket.version)
            .where(Ticket.status == TicketStatus.ACTIVE.value, Ticket.expires_at < now)
            .order_by(Ticket.expires_at)
            .limit(limit)
        )
        with store_call("list overdue"), self._session_factory() as db:
            return [(row.id, row.version) for row in db.execute(q).all()]

    def list_unreconciled(self, limit: int) -> list[tuple[str, str, datetime]]:
        """(id, coupon_id, consumed_at) of consumed tickets whose coupon is not burned yet."""
        q = (
            select(Ticket.id, Ticket.coupon_id, Ticket.consumed_at)
            .join(Coupon, Coupon.id == Ticket.coupon_id)
            .where(Ticket.status == TicketStatus.CONSUMED.value, Coupon.is_redeemed.is_(False))
            .order_by(Ticket.consumed_at)
            .limit(limit)
        )
        with store_call("list unreconciled"), self._session_factory() as db:
            return [(row.id, row.coupon_id, row.consumed_at) for row in db.execute(q).all()]
