# issue_sync/signature.py — HMAC-SHA256 verification of inbound webhook bodies
import hmac
import hashlib
from typing import Optional

from issue_sync.errors import AuthenticationFailure

SIGNATURE_PREFIX = "sha256="


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 digest of the raw request body"""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    """Raise AuthenticationFailure unless the signature matches the body.

    GitHub sends ``sha256=<hex>``; Gitea sends the bare hex digest. Both are
    accepted. An integration without a secret is trusted without checking.
    """
    if not secret:
        return
    if not signature:
        raise AuthenticationFailure("Missing webhook signature")

    provided = signature.strip()
    if provided.startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]

    expected = compute_signature(raw_body, secret)
    if not hmac.compare_digest(expected.encode("ascii"), provided.lower().encode("utf-8")):
        raise AuthenticationFailure("Invalid webhook signature")
