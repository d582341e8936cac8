from datetime import datetime, timedelta, timezone

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

ALGO = "HS256"
SCANNER_ROLE = "merchant_scanner"


def mint_scanner_token(merchant_id: str, secret: str, ttl_minutes: int = 720) -> str:
    exp = int((datetime.now(timezone.utc) + timedelta(minutes=ttl_minutes)).timestamp())
    payload = {"sub": merchant_id, "role": SCANNER_ROLE, "exp": exp}
    return jwt.encode(payload, secret, algorithm=ALGO)


def verify_scanner_token(token: str, secret: str) -> str:
    """Return the merchant id a scanner token was minted for."""
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGO])
    except ExpiredSignatureError:
        raise ValueError("EXPIRED")
    except JWTError:
        raise ValueError("INVALID_TOKEN")

    if payload.get("role") != SCANNER_ROLE or not payload.get("sub"):
        raise ValueError("INVALID_TOKEN")

    return payload["sub"]
