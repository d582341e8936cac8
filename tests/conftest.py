import os
import tempfile

# Point the app at a throwaway database before anything imports it
_tmp_dir = tempfile.mkdtemp(prefix="redemption-gate-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp_dir, 'tickets.db')}"
os.environ["READ_REPLICA_URL"] = ""
os.environ["TICKET_SIGNING_SECRET"] = "test-signing-secret"
os.environ["SCANNER_TOKEN_SECRET"] = "test-scanner-secret"
os.environ["SCANNER_AUTH_REQUIRED"] = "false"
os.environ["STORE_TIMEOUT_SECONDS"] = "30"

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fakeredis import aioredis  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from redemption_gate import deps  # noqa: E402
from redemption_gate.codec import TicketCodec  # noqa: E402
from redemption_gate.db import Base, SessionLocal, engine, make_engine  # noqa: E402
from redemption_gate.gate import ConsumptionGate  # noqa: E402
from redemption_gate.issuer import TicketIssuer  # noqa: E402
from redemption_gate.ledger import CouponLedger  # noqa: E402
from redemption_gate.main import app  # noqa: E402
from redemption_gate.store import TicketStore  # noqa: E402
from redemption_gate.sweeper import ExpirySweeper  # noqa: E402
from tests.helpers import FakeClock  # noqa: E402


@pytest.fixture(autouse=True)
def clean_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def codec():
    return TicketCodec("test-signing-secret")


@pytest.fixture
def store():
    return TicketStore(SessionLocal)


@pytest.fixture
def broken_store(tmp_path):
    # the parent directory does not exist, so every connect fails
    bad = make_engine(f"sqlite:///{tmp_path / 'missing' / 'tickets.db'}")
    return TicketStore(sessionmaker(bind=bad))


@pytest.fixture
def ledger():
    return CouponLedger(SessionLocal)


@pytest.fixture
def issuer(store, ledger, codec, clock):
    return TicketIssuer(store, ledger, codec, clock)


@pytest.fixture
def gate(store, codec, clock):
    return ConsumptionGate(store, codec, clock)


@pytest.fixture
def sweeper(store, clock):
    return ExpirySweeper(store, clock, batch_size=50)


@pytest_asyncio.fixture(scope="function")
async def redis():
    r = aioredis.FakeRedis(decode_responses=True)
    try:
        await r.flushall()
        yield r
    finally:
        await r.aclose()


@pytest_asyncio.fixture(scope="function")
async def client(redis, store, ledger, codec, issuer, gate, sweeper):
    app.dependency_overrides.update({
        deps.get_redis: lambda: redis,
        deps.get_store: lambda: store,
        deps.get_ledger: lambda: ledger,
        deps.get_codec: lambda: codec,
        deps.get_issuer: lambda: issuer,
        deps.get_gate: lambda: gate,
        deps.get_sweeper: lambda: sweeper,
    })
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://test", timeout=10.0) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
