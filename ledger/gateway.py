"""
Payment gateway signature verification.

The gateway signs ``{order_id}|{payment_id}`` with HMAC-SHA256 using the
merchant key secret and sends the hex digest back with the payment.
"""

import hashlib
import hmac


class SignatureVerifier:
    """HMAC-SHA256 check of gateway payment callbacks."""

    def __init__(self, key_secret: str):
        if not key_secret:
            raise ValueError("key_secret is required for signature verification")
        self._key = key_secret.encode("utf-8")

    def sign(self, order_id: str, payment_id: str) -> str:
        message = f"{order_id}|{payment_id}".encode("utf-8")
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not (order_id and payment_id and signature):
            return False
        return hmac.compare_digest(self.sign(order_id, payment_id), str(signature))
