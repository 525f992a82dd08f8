"""Webhook signature checks."""

import base64
import hashlib
import hmac
from typing import Optional

from leadflow.exceptions import WebhookSignatureError


def _hmac_sha256(secret: str, body: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()


def verify_calendly_signature(body: bytes, signature: Optional[str], secret: str) -> None:
    """
    Calendly-Webhook-Signature carries either a base64 HMAC-SHA256 of the raw
    body, or the `t=<timestamp>,v1=<hex>` form where the signed string is
    `<timestamp>.<body>`.
    """
    if not signature:
        raise WebhookSignatureError("Missing Calendly signature")

    parts = dict(
        item.split("=", 1) for item in signature.split(",") if "=" in item and not item.endswith("=")
    )
    if "t" in parts and "v1" in parts:
        signed = parts["t"].encode("utf-8") + b"." + body
        expected = _hmac_sha256(secret, signed).hex()
        provided = parts["v1"]
    else:
        expected = base64.b64encode(_hmac_sha256(secret, body)).decode("ascii")
        provided = signature.strip()

    if not hmac.compare_digest(expected, provided):
        raise WebhookSignatureError("Invalid Calendly signature")


def verify_facebook_signature(body: bytes, signature: Optional[str], app_secret: str) -> None:
    """X-Hub-Signature-256: `sha256=<hex HMAC of raw body>` keyed by the app secret."""
    if not signature or not signature.startswith("sha256="):
        raise WebhookSignatureError("Missing Facebook signature")

    expected = _hmac_sha256(app_secret, body).hex()
    if not hmac.compare_digest(expected, signature[len("sha256="):]):
        raise WebhookSignatureError("Invalid Facebook signature")
