import logging

from .clock import ExpiryClock
from .config import SWEEP_BATCH_SIZE
from .models import TicketStatus
from .store import TicketStore

log = logging.getLogger(__name__)


class ExpirySweeper:
    """Marks overdue active tickets expired.

    Best-effort: ``ConsumptionGate`` re-checks expiry on every scan, so a
    lagging or stopped sweeper never lets a late scan through.
    """

    def __init__(self, store: TicketStore, clock: ExpiryClock, batch_size: int = SWEEP_BATCH_SIZE):
        self.store = store
        self.clock = clock
        self.batch_size = batch_size

    def run_once(self) -> int:
        now = self.clock.now()
        expired = 0
        for ticket_id, version in self.store.list_overdue(now, self.batch_size):
            if self.store.conditional_update_status(ticket_id, version, TicketStatus.EXPIRED, now):
                expired += 1
        if expired:
            log.info("swept expired=%d", expired)
        return expired
