from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from redis.asyncio import Redis

from .clock import ExpiryClock
from .codec import TicketCodec
from .config import (
    REDIS_URL, SCANNER_AUTH_REQUIRED, SCANNER_TOKEN_SECRET, STORE_TIMEOUT_SECONDS, TICKET_SIGNING_SECRET,
)
from .db import ReadSessionLocal, SessionLocal
from .errors import Unauthorized
from .gate import ConsumptionGate
from .issuer import TicketIssuer
from .ledger import CouponLedger
from .security import verify_scanner_token
from .store import TicketStore
from .sweeper import ExpirySweeper

redis = Redis.from_url(
    REDIS_URL,
    decode_responses=True,
    socket_timeout=STORE_TIMEOUT_SECONDS,
    socket_connect_timeout=STORE_TIMEOUT_SECONDS,
)

clock = ExpiryClock()
codec = TicketCodec(TICKET_SIGNING_SECRET)
store = TicketStore(SessionLocal, ReadSessionLocal)
ledger = CouponLedger(SessionLocal)

issuer = TicketIssuer(store, ledger, codec, clock)
gate = ConsumptionGate(store, codec, clock)
sweeper = ExpirySweeper(store, clock)

bearer = HTTPBearer(auto_error=False)


def get_redis() -> Redis:
    return redis


def get_store() -> TicketStore:
    return store


def get_ledger() -> CouponLedger:
    return ledger


def get_codec() -> TicketCodec:
    return codec


def get_issuer() -> TicketIssuer:
    return issuer


def get_gate() -> ConsumptionGate:
    return gate


def get_sweeper() -> ExpirySweeper:
    return sweeper


def scanner_merchant(creds: HTTPAuthorizationCredentials | None = Depends(bearer)) -> str | None:
    """Merchant id from the scanner's bearer token, or None when none was sent."""
    if not creds:
        if SCANNER_AUTH_REQUIRED:
            raise Unauthorized("scanner token required")
        return None
    try:
        return verify_scanner_token(creds.credentials, SCANNER_TOKEN_SECRET)
    except ValueError as e:
        raise Unauthorized(str(e))
