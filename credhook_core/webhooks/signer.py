from __future__ import annotations

import hashlib
import hmac

SECRET_HEADER = "X-Webhook-Secret"
SIGNATURE_HEADER = "X-Webhook-Signature"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"
EVENT_HEADER = "X-Webhook-Event"


def sign_payload(secret: str, timestamp: str, body: bytes) -> str:
    message = f"{timestamp}.".encode("utf-8") + body
    signature = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def verify_signature(secret: str, header: str, body: bytes) -> bool:
    """Receiver-side check of a ``t=<ts>,v1=<hex>`` signature header."""
    parts: dict[str, str] = {}
    for item in header.split(","):
        key, sep, value = item.partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    timestamp = parts.get("t")
    if not timestamp or "v1" not in parts:
        return False
    expected = sign_payload(secret, timestamp, body).rsplit("v1=", 1)[1]
    return hmac.compare_digest(expected, parts["v1"])
