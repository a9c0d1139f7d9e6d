"""HMAC helpers for inbound verification and outbound signing."""

import base64
import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)


def sign_hex(body: bytes, secret: str) -> str:
    """Compute HMAC-SHA256 signature over the raw body, hex encoded."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def sign_base64(body: bytes, secret: str) -> str:
    """HMAC-SHA256 digest, base64 encoded (Shopify style)."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_hex(body: bytes, secret: str, signature: str, prefix: str = "sha256=") -> bool:
    """Validate a hex HMAC-SHA256 signature with optional ``sha256=`` prefix."""
    if not secret or not signature:
        return False
    sig = signature[len(prefix):] if signature.startswith(prefix) else signature
    return hmac.compare_digest(sign_hex(body, secret), sig.strip().lower())


def verify_base64(body: bytes, secret: str, signature: str) -> bool:
    if not secret or not signature:
        return False
    return hmac.compare_digest(sign_base64(body, secret), signature.strip())
