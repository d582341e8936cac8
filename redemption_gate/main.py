import logging
import uuid
from datetime import timedelta
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from redis.exceptions import RedisError
from starlette.concurrency import run_in_threadpool

from .admin import router as admin_router
from .audit import record_decision
from .codec import TicketCodec
from .config import SCAN_RATE_LIMIT_PER_MIN, configure_logging
from .db import Base, engine
from .deps import get_codec, get_gate, get_issuer, get_redis, get_store, scanner_merchant
from .errors import InvalidPayload, InvalidRequest, MerchantMismatch, RateLimited, RedemptionError, TicketNotFound
from .gate import ConsumptionGate
from .idempotency import get_cached_response, set_cached_response
from .issuer import TicketIssuer
from .rate_limit import token_bucket
from .reconciliation import publish_redemption
from .schemas import (
    CancelOut, CancelReq, ConsumeOut, ConsumeReq, IssueOut, IssueReq, StatusLiteral, TicketOut,
)
from .store import MAX_LIST_LIMIT, TicketStore, redis_call

configure_logging()
log = logging.getLogger(__name__)

app = FastAPI(title="Redemption Gate", version="1.0.0")
app.include_router(admin_router)

# Create DB tables at import time, schema is owned by the models
Base.metadata.create_all(bind=engine)


@app.exception_handler(RedemptionError)
async def redemption_error_handler(request: Request, exc: RedemptionError):
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.get("/health")
def health():
    return {"status": "ok"}


def _client(request: Request) -> tuple[str, str]:
    ip = request.client.host if request.client else "unknown"
    return ip, request.headers.get("user-agent", "")


def _payload_ticket_id(codec: TicketCodec, payload) -> str | None:
    try:
        return codec.decode(payload).ticket_id
    except InvalidPayload:
        return None


@app.post("/tickets", status_code=201, response_model=IssueOut)
async def issue_ticket(
    req: IssueReq,
    request: Request,
    issuer: TicketIssuer = Depends(get_issuer),
    codec: TicketCodec = Depends(get_codec),
    redis: Redis = Depends(get_redis),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    decision_id = str(uuid.uuid4())
    ip, ua = _client(request)
    ttl = timedelta(seconds=req.ttlSeconds) if req.ttlSeconds is not None else None
    location = req.location.model_dump() if req.location else None
    scope = f"issue:{req.ownerId}:{req.couponId}"
    try:
        # Idempotency: a retried issue returns the ticket the first attempt created
        if idempotency_key:
            with redis_call("idempotency lookup"):
                cached = await get_cached_response(redis, scope, idempotency_key)
            if cached:
                return JSONResponse(status_code=201, content=cached)

        ticket = await run_in_threadpool(issuer.issue, req.ownerId, req.couponId, req.merchantId, ttl, location)
    except RedemptionError as e:
        await run_in_threadpool(
            record_decision, decision_id, "issue", "REJECTED", e.code,
            actor_id=req.ownerId, ip=ip, user_agent=ua,
        )
        raise
    await run_in_threadpool(
        record_decision, decision_id, "issue", "ACCEPTED", "OK",
        ticket_id=ticket.id, actor_id=req.ownerId, ip=ip, user_agent=ua,
    )

    resp = IssueOut(ticket=TicketOut.from_ticket(ticket), qrPayload=codec.encode(ticket))
    if idempotency_key:
        # The ticket exists either way; without the cache a retry gets TicketAlreadyActive
        try:
            await set_cached_response(redis, scope, idempotency_key, resp.model_dump())
        except RedisError:
            log.exception("idempotency cache write failed decision_id=%s ticket_id=%s", decision_id, ticket.id)
    return resp


@app.post("/tickets/consume", response_model=ConsumeOut)
async def consume_ticket(
    req: ConsumeReq,
    request: Request,
    gate: ConsumptionGate = Depends(get_gate),
    codec: TicketCodec = Depends(get_codec),
    redis: Redis = Depends(get_redis),
    token_merchant: Optional[str] = Depends(scanner_merchant),
):
    decision_id = str(uuid.uuid4())
    ip, ua = _client(request)

    try:
        # Rate limit per scanner IP, shared across instances through Redis
        with redis_call("rate limit"):
            allowed = await token_bucket(
                redis, key=f"scan:{ip}", capacity=SCAN_RATE_LIMIT_PER_MIN, refill_per_sec=SCAN_RATE_LIMIT_PER_MIN / 60
            )
        if not allowed:
            raise RateLimited("too many scans, slow down")

        merchant_id = req.merchantId or token_merchant
        if not merchant_id:
            raise InvalidRequest("merchantId is required")
        if token_merchant and token_merchant != merchant_id:
            raise MerchantMismatch("scanner token was issued to a different merchant")

        result = await run_in_threadpool(gate.consume, req.payload, merchant_id)
    except RedemptionError as e:
        await run_in_threadpool(
            record_decision, decision_id, "consume", "REJECTED", e.code,
            ticket_id=_payload_ticket_id(codec, req.payload),
            actor_id=req.merchantId or token_merchant, ip=ip, user_agent=ua,
        )
        raise

    await run_in_threadpool(
        record_decision, decision_id, "consume", "ACCEPTED", "OK",
        ticket_id=result.ticket_id, actor_id=result.merchant_id, ip=ip, user_agent=ua,
    )
    # The ticket is consumed either way; the worker's store pass picks up a lost publish
    try:
        await publish_redemption(redis, result, decision_id)
    except RedisError:
        log.exception("reconciliation publish failed decision_id=%s ticket_id=%s", decision_id, result.ticket_id)

    return ConsumeOut(
        ticketId=result.ticket_id,
        couponId=result.coupon_id,
        ownerId=result.owner_id,
        merchantId=result.merchant_id,
        consumedAt=result.consumed_at.isoformat(),
        decisionId=decision_id,
    )


@app.post("/tickets/{ticket_id}/cancel", response_model=CancelOut)
async def cancel_ticket(
    ticket_id: str,
    req: CancelReq,
    request: Request,
    gate: ConsumptionGate = Depends(get_gate),
):
    decision_id = str(uuid.uuid4())
    ip, ua = _client(request)
    try:
        ticket = await run_in_threadpool(gate.cancel, req.ownerId, ticket_id)
    except RedemptionError as e:
        await run_in_threadpool(
            record_decision, decision_id, "cancel", "REJECTED", e.code,
            ticket_id=ticket_id, actor_id=req.ownerId, ip=ip, user_agent=ua,
        )
        raise
    await run_in_threadpool(
        record_decision, decision_id, "cancel", "ACCEPTED", "OK",
        ticket_id=ticket_id, actor_id=req.ownerId, ip=ip, user_agent=ua,
    )
    return CancelOut(ticket=TicketOut.from_ticket(ticket))


@app.get("/tickets/owner/{owner_id}", response_model=list[TicketOut])
async def list_owner_tickets(
    owner_id: str,
    status: Optional[StatusLiteral] = None,
    limit: int = MAX_LIST_LIMIT,
    store: TicketStore = Depends(get_store),
):
    tickets = await run_in_threadpool(store.list_by_owner, owner_id, status, limit)
    return [TicketOut.from_ticket(t) for t in tickets]


@app.get("/tickets/merchant/{merchant_id}", response_model=list[TicketOut])
async def list_merchant_tickets(
    merchant_id: str,
    status: Optional[StatusLiteral] = None,
    limit: int = MAX_LIST_LIMIT,
    store: TicketStore = Depends(get_store),
):
    tickets = await run_in_threadpool(store.list_by_merchant, merchant_id, status, limit)
    return [TicketOut.from_ticket(t) for t in tickets]


@app.get("/tickets/{ticket_id}", response_model=TicketOut)
async def get_ticket(ticket_id: str, store: TicketStore = Depends(get_store)):
    ticket = await run_in_threadpool(store.get, ticket_id)
    if ticket is None:
        raise TicketNotFound(f"ticket {ticket_id} not found")
    return TicketOut.from_ticket(ticket)
