"""
HMAC verification of commerce platform webhooks.
"""

import base64
import hashlib
import hmac


def compute_hmac(secret: str, body: bytes) -> str:
    """Base64 HMAC-SHA256 digest of ``body``."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def verify_hmac(secret: str, body: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(compute_hmac(secret, body), signature.strip())
