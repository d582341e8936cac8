import base64
import binascii
import hashlib
import hmac
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from .errors import InvalidPayload

PAYLOAD_VERSION = 1
DIGEST_SIZE = hashlib.sha256().digest_size
# version byte | ticket uuid | digest
PAYLOAD_SIZE = 1 + 16 + DIGEST_SIZE

_B64URL = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class DecodedPayload:
    ticket_id: str
    digest: str


def _canonical_ts(ts: datetime) -> str:
    if ts.tzinfo is None:
        raise ValueError("issued_at must be timezone-aware")
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class TicketCodec:
    """Ticket digests and the scannable payload that carries them.

    The digest is an HMAC-SHA256 over the length-prefixed fields
    ``(coupon_id, owner_id, nonce, issued_at)``. The payload holds only the
    ticket id and that digest, so a captured code reveals neither the nonce nor
    the owner and cannot be rewritten into a different valid ticket.
    """

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("ticket signing secret must not be empty")
        self._key = secret.encode("utf-8")

    def hash(self, coupon_id: str, owner_id: str, nonce: str, issued_at: datetime) -> str:
        parts = (coupon_id, owner_id, nonce, _canonical_ts(issued_at))
        message = b"".join(
            f"{len(p.encode('utf-8'))}:".encode("ascii") + p.encode("utf-8") for p in parts
        )
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    def encode(self, ticket) -> str:
        try:
            ticket_uuid = uuid.UUID(ticket.id)
            digest = bytes.fromhex(ticket.ticket_hash)
        except ValueError as e:
            raise ValueError(f"ticket {ticket.id!r} cannot be encoded") from e
        if len(digest) != DIGEST_SIZE:
            raise ValueError(f"ticket {ticket.id!r} has a malformed digest")
        raw = bytes([PAYLOAD_VERSION]) + ticket_uuid.bytes + digest
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    def decode(self, payload) -> DecodedPayload:
        if not isinstance(payload, str) or not _B64URL.match(payload):
            raise InvalidPayload("payload is not base64url text")
        try:
            raw = base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4))
        except (binascii.Error, ValueError):
            raise InvalidPayload("payload is not base64url text")

        if len(raw) != PAYLOAD_SIZE:
            raise InvalidPayload("payload has the wrong length")
        if raw[0] != PAYLOAD_VERSION:
            raise InvalidPayload(f"unknown payload version {raw[0]}")

        # reject non-canonical encodings (stray trailing bits)
        if base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii") != payload:
            raise InvalidPayload("payload is not canonically encoded")

        return DecodedPayload(
            ticket_id=str(uuid.UUID(bytes=raw[1:17])),
            digest=raw[17:].hex(),
        )
