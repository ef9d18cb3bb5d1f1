"""
HMAC-SHA256 webhook signatures.
"""

import hashlib
import hmac


def compute_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Constant-time check of a hex signature header.

    An empty secret or a missing header never verifies.
    """
    if not secret or not signature:
        return False
    provided = signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = compute_signature(secret, body)
    return hmac.compare_digest(expected.encode("ascii"), provided.lower().encode("utf-8"))
