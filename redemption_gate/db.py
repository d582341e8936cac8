from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from .config import DATABASE_URL, READ_REPLICA_URL, STORE_TIMEOUT_SECONDS


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        # busy timeout; the engine is shared across threadpool workers
        return {"check_same_thread": False, "timeout": STORE_TIMEOUT_SECONDS}
    if url.startswith("postgresql"):
        return {
            "connect_timeout": max(1, int(STORE_TIMEOUT_SECONDS)),
            "options": f"-c statement_timeout={int(STORE_TIMEOUT_SECONDS * 1000)}",
        }
    return {}


def make_engine(url: str):
    kwargs = {"pool_pre_ping": True, "connect_args": _connect_args(url)}
    if not url.startswith("sqlite"):
        kwargs["pool_timeout"] = STORE_TIMEOUT_SECONDS
    return create_engine(url, **kwargs)


class Base(DeclarativeBase):
    pass


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

if READ_REPLICA_URL:
    read_engine = make_engine(READ_REPLICA_URL)
    ReadSessionLocal = sessionmaker(bind=read_engine, autoflush=False, expire_on_commit=False)
else:
    ReadSessionLocal = SessionLocal
