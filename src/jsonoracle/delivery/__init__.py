"""Webhook delivery with retry and signing."""

from jsonoracle.delivery.dispatcher import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    CallbackDispatcher,
    build_webhook_payload,
    sign_payload,
    verify_signature,
)

__all__ = [
    "CallbackDispatcher",
    "SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "build_webhook_payload",
    "sign_payload",
    "verify_signature",
]
