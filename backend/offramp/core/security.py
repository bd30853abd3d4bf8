"""Webhook signing and settlement key helpers."""

import hmac
import hashlib
import re
import uuid

_PRIVATE_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

# Namespace for deterministic per-request idempotency tokens
_OFFRAMP_NAMESPACE = uuid.UUID("6f1f5e0c-3b7a-4d8e-9a52-1c0d7e4b2f61")


def compute_signature(raw_body: bytes, secret: str) -> str:
    """
    Compute the hex HMAC-SHA256 of a webhook body.

    Args:
        raw_body: Request body exactly as received
        secret: Shared webhook secret

    Returns:
        str: Lowercase hex digest
    """
    return hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    """
    Verify a webhook signature in constant time.

    Args:
        raw_body: Request body exactly as received
        signature: Value of the signature header, if any
        secret: Shared webhook secret

    Returns:
        bool: True if the signature matches, False otherwise
    """
    if not signature or not secret:
        return False
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


def format_private_key(private_key: str | None) -> str:
    """Normalize a hex private key to 0x + 64 hex characters."""
    if not private_key:
        raise ValueError("Private key is required")

    formatted = private_key if private_key.startswith("0x") else f"0x{private_key}"
    if not _PRIVATE_KEY_RE.match(formatted):
        raise ValueError("Invalid private key format")
    return formatted


def request_idempotency_token(swap_id: str) -> str:
    """Stable token for one off-ramp request, sent as the payout order reference."""
    return uuid.uuid5(_OFFRAMP_NAMESPACE, f"offramp:{swap_id}").hex


def settlement_idempotency_key(payout_order_id: str) -> str:
    """Idempotency key of the settlement transfer for a payout order."""
    return f"settlement:{payout_order_id}"
