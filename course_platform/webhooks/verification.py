"""WooCommerce webhook signature verification.

WooCommerce sends ``X-WC-Webhook-Signature``: base64(HMAC-SHA256(secret, raw body)).

Security contract:
- Comparison uses hmac.compare_digest() (constant-time)
- Missing header or missing secret -> verification fails (fail-closed)
- Never raises; any malformed input is simply "not valid"
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-wc-webhook-signature"


def compute_signature(body: bytes, secret: str) -> str:
    """Base64-encoded HMAC-SHA256 of ``body`` keyed with ``secret``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Verify a WooCommerce webhook signature.

    Args:
        body: Raw request body bytes, exactly as received
        signature: Value of the X-WC-Webhook-Signature header
        secret: Shared webhook secret configured in WooCommerce

    Returns:
        True if the signature matches
    """
    if not secret:
        logger.warning("WOOCOMMERCE_WEBHOOK_SECRET not set, rejecting webhook")
        return False
    if not signature:
        return False

    expected = compute_signature(body, secret)
    try:
        return hmac.compare_digest(expected, signature.strip())
    except TypeError:
        # compare_digest refuses non-ASCII str input
        return False
