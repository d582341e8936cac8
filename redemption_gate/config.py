import logging
import os

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./redemption_gate.db")
# Listing endpoints read from here when set; the gate always reads the primary.
READ_REPLICA_URL = os.environ.get("READ_REPLICA_URL", "")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

TICKET_SIGNING_SECRET = os.environ.get("TICKET_SIGNING_SECRET", "dev_secret_change_me")
SCANNER_TOKEN_SECRET = os.environ.get("SCANNER_TOKEN_SECRET", "dev_scanner_secret_change_me")
SCANNER_AUTH_REQUIRED = os.environ.get("SCANNER_AUTH_REQUIRED", "false").lower() == "true"

TICKET_TTL_SECONDS = int(os.environ.get("TICKET_TTL_SECONDS", "300"))
MAX_TICKET_TTL_SECONDS = int(os.environ.get("MAX_TICKET_TTL_SECONDS", "900"))

STORE_TIMEOUT_SECONDS = float(os.environ.get("STORE_TIMEOUT_SECONDS", "5"))

SWEEP_INTERVAL_SECONDS = float(os.environ.get("SWEEP_INTERVAL_SECONDS", "60"))
SWEEP_BATCH_SIZE = int(os.environ.get("SWEEP_BATCH_SIZE", "200"))

SCAN_RATE_LIMIT_PER_MIN = int(os.environ.get("SCAN_RATE_LIMIT_PER_MIN", "60"))
IDEMPOTENCY_TTL_SECONDS = int(os.environ.get("IDEMPOTENCY_TTL_SECONDS", "300"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


def configure_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
