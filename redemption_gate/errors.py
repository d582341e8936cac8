from .models import TicketStatus


class RedemptionError(Exception):
    """Base for every failure the API reports to a caller.

    ``code`` is the stable machine-readable name sent on the wire, ``http_status``
    the response status, and ``retryable`` tells the caller whether repeating the
    same request can succeed.
    """

    code = "RedemptionError"
    http_status = 400
    retryable = False

    def __init__(self, detail: str | None = None):
        self.detail = detail or self.code
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.detail, "retryable": self.retryable}


class InvalidRequest(RedemptionError):
    code = "InvalidRequest"
    http_status = 422


class CouponNotOwned(RedemptionError):
    code = "CouponNotOwned"
    http_status = 409


class TicketAlreadyActive(RedemptionError):
    code = "TicketAlreadyActive"
    http_status = 409


class TicketNotFound(RedemptionError):
    code = "TicketNotFound"
    http_status = 404


class CouponNotFound(RedemptionError):
    code = "CouponNotFound"
    http_status = 404


class InvalidPayload(RedemptionError):
    code = "InvalidPayload"
    http_status = 400


class TamperedTicket(RedemptionError):
    code = "TamperedTicket"
    http_status = 403


class TicketExpired(RedemptionError):
    code = "TicketExpired"
    http_status = 410


class MerchantMismatch(RedemptionError):
    code = "MerchantMismatch"
    http_status = 403


class NotTicketOwner(RedemptionError):
    code = "NotTicketOwner"
    http_status = 403


class Unauthorized(RedemptionError):
    code = "Unauthorized"
    http_status = 401


class RateLimited(RedemptionError):
    code = "RateLimited"
    http_status = 429
    retryable = True


class StoreUnavailable(RedemptionError):
    code = "Unavailable"
    http_status = 503
    retryable = True


class TicketNotActive(RedemptionError):
    code = "TicketNotActive"
    http_status = 409
    status: str | None = None

    def __init__(self, status: str | None = None, detail: str | None = None):
        if status is not None:
            self.status = status
        super().__init__(detail or f"ticket is {self.status or 'not active'}")

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["status"] = self.status
        return body

    @staticmethod
    def for_status(status: str) -> "TicketNotActive":
        """The most specific error for a ticket found in a terminal ``status``."""
        cls = _NOT_ACTIVE_BY_STATUS.get(status, TicketNotActive)
        return cls(status)


class AlreadyConsumed(TicketNotActive):
    code = "AlreadyConsumed"
    status = TicketStatus.CONSUMED.value


class AlreadyExpired(TicketNotActive):
    code = "AlreadyExpired"
    http_status = 410
    status = TicketStatus.EXPIRED.value


class AlreadyCancelled(TicketNotActive):
    code = "AlreadyCancelled"
    status = TicketStatus.CANCELLED.value


_NOT_ACTIVE_BY_STATUS = {
    TicketStatus.CONSUMED.value: AlreadyConsumed,
    TicketStatus.EXPIRED.value: AlreadyExpired,
    TicketStatus.CANCELLED.value: AlreadyCancelled,
}
