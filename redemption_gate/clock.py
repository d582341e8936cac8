from datetime import datetime, timezone


class ExpiryClock:
    """Server-side source of "now" for every expiry decision.

    Client-supplied timestamps are never consulted; tests swap in a clock
    whose ``now`` they control.
    """

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def is_past(self, ts: datetime, now: datetime | None = None) -> bool:
        """True once ``ts`` is strictly behind ``now`` (the current time by default)."""
        now = self.now() if now is None else now
        return now > ts
