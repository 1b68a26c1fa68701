"""
HMAC-SHA256 signatures for escrow webhooks.

The signature is the hex digest of the raw request body keyed with
ESCROW_WEBHOOK_SECRET, sent in the X-Escrow-Signature header. A "sha256="
prefix is accepted.
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_HEADER = "X-Escrow-Signature"


def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    if not secret or not signature:
        return False
    if signature.startswith("sha256="):
        signature = signature[len("sha256=") :]
    return hmac.compare_digest(compute_signature(body, secret), signature.strip())
