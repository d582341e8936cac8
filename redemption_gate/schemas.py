from typing import Literal, Optional

from pydantic import BaseModel, Field

from .models import Ticket

StatusLiteral = Literal["active", "consumed", "expired", "cancelled"]


class LocationIn(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = Field(default=None, max_length=255)


class IssueReq(BaseModel):
    ownerId: str = Field(min_length=1, max_length=64)
    couponId: str = Field(min_length=1, max_length=64)
    merchantId: str = Field(min_length=1, max_length=64)
    ttlSeconds: Optional[int] = None
    location: Optional[LocationIn] = None


class ConsumeReq(BaseModel):
    # not validated here: a malformed payload must surface as InvalidPayload
    payload: str
    merchantId: Optional[str] = None


class CancelReq(BaseModel):
    ownerId: str


class TicketOut(BaseModel):
    id: str
    couponId: str
    ownerId: str
    merchantId: str
    ticketHash: str
    status: StatusLiteral
    issuedAt: str
    expiresAt: str
    consumedAt: Optional[str] = None
    location: Optional[LocationIn] = None
    version: int

    @classmethod
    def from_ticket(cls, t: Ticket) -> "TicketOut":
        loc = t.location
        return cls(
            id=t.id,
            couponId=t.coupon_id,
            ownerId=t.owner_id,
            merchantId=t.merchant_id,
            ticketHash=t.ticket_hash,
            status=t.status,
            issuedAt=t.issued_at.isoformat(),
            expiresAt=t.expires_at.isoformat(),
            consumedAt=t.consumed_at.isoformat() if t.consumed_at else None,
            location=LocationIn(**loc) if loc else None,
            version=t.version,
        )


class IssueOut(BaseModel):
    ticket: TicketOut
    qrPayload: str


class ConsumeOut(BaseModel):
    ticketId: str
    couponId: str
    ownerId: str
    merchantId: str
    consumedAt: str
    decisionId: str


class CancelOut(BaseModel):
    ticket: TicketOut


class CouponIn(BaseModel):
    couponId: str = Field(min_length=1, max_length=64)
    ownerId: str = Field(min_length=1, max_length=64)
    merchantId: str = Field(min_length=1, max_length=64)
    expiresAt: str  # ISO-8601 with offset


class TransferReq(BaseModel):
    newOwnerId: str = Field(min_length=1, max_length=64)
