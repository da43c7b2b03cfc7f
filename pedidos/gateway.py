import hashlib
import hmac
from typing import Optional

from loguru import logger

CURRENCY = "INR"


class GatewayError(Exception):
    pass


# Envoltorio del SDK de Razorpay: crear ordenes y verificar firmas del callback
class RazorpayGateway:
    def __init__(self, key_id: Optional[str], key_secret: Optional[str], client=None):
        self.key_id = key_id
        self.key_secret = key_secret
        self._client = client
        if self._client is None and self.configured:
            import razorpay
            self._client = razorpay.Client(auth=(key_id, key_secret))

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    # amount va en paise
    def create_order(self, amount: int, receipt: str, notes: dict) -> dict:
        data = {"amount": amount, "currency": CURRENCY, "receipt": receipt, "notes": notes}
        try:
            rp_order = self._client.order.create(data=data)
        except Exception as e:
            logger.error("Razorpay order creation failed for {}: {}", receipt, e)
            raise GatewayError(str(e)) from e
        logger.info("Razorpay order {} created for {} ({} paise)", rp_order.get("id"), receipt, amount)
        return rp_order

    def expected_signature(self, order_id: str, payment_id: str) -> str:
        message = f"{order_id}|{payment_id}".encode()
        return hmac.new(self.key_secret.encode(), message, hashlib.sha256).hexdigest()

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        expected = self.expected_signature(order_id, payment_id)
        return hmac.compare_digest(expected.encode(), signature.encode())
