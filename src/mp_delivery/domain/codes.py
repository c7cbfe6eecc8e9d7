"""Verification codes and the scan payload of a delivery token.

Codes are Crockford base-32 (no I, L, O, U), 5 bits per symbol: the default
10 symbols give 50 bits. Riders type codes by hand, so comparison normalizes
case, separators and the usual look-alikes before a constant-time compare.
"""

import hmac
import json
import secrets
from dataclasses import dataclass
from datetime import datetime

from config.settings import MIN_VERIFICATION_CODE_LENGTH, settings
from src.mp_common.enums import TokenKind
from src.mp_common.errors import InvalidTokenError

CROCKFORD_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_LOOKALIKES = str.maketrans({"I": "1", "L": "1", "O": "0"})
_PAYLOAD_KEYS = ("orderId", "kind", "timestamp", "holderId", "verificationCode")
_TOKEN_KINDS = {kind.value for kind in TokenKind}


def generate_verification_code(length: int | None = None) -> str:
    size = length or settings.VERIFICATION_CODE_LENGTH
    if size < MIN_VERIFICATION_CODE_LENGTH:
        raise ValueError(f"verification codes need at least {MIN_VERIFICATION_CODE_LENGTH} symbols, got {size}")
    return "".join(secrets.choice(CROCKFORD_ALPHABET) for _ in range(size))


def normalize_code(code: str) -> str:
    return code.strip().upper().replace("-", "").replace(" ", "").translate(_LOOKALIKES)


def codes_match(expected: str, presented: str) -> bool:
    return hmac.compare_digest(
        normalize_code(expected).encode(), normalize_code(presented).encode()
    )


@dataclass(frozen=True)
class ScanPayload:
    order_id: str
    kind: str
    timestamp: str
    holder_id: str
    verification_code: str


def encode_payload(
    order_id: str, kind: str, issued_at: datetime, holder_id: str, verification_code: str
) -> str:
    return json.dumps(
        {
            "orderId": order_id,
            "kind": kind,
            "timestamp": issued_at.isoformat(),
            "holderId": holder_id,
            "verificationCode": verification_code,
        }
    )


def decode_payload(raw: str) -> ScanPayload:
    """Parse a scanned payload; anything malformed is an InvalidTokenError."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        raise InvalidTokenError(None, None, "payload is not valid JSON") from None
    if not isinstance(data, dict):
        raise InvalidTokenError(None, None, "payload must be a JSON object")
    missing = [key for key in _PAYLOAD_KEYS if not isinstance(data.get(key), str) or not data[key]]
    if missing:
        raise InvalidTokenError(
            data.get("orderId") if isinstance(data.get("orderId"), str) else None,
            None,
            f"payload missing {', '.join(missing)}",
        )
    if data["kind"] not in _TOKEN_KINDS:
        raise InvalidTokenError(data["orderId"], None, f"unknown token kind {data['kind']!r}")
    return ScanPayload(
        order_id=data["orderId"],
        kind=data["kind"],
        timestamp=data["timestamp"],
        holder_id=data["holderId"],
        verification_code=data["verificationCode"],
    )
