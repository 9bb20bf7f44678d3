# payments.py
import logging

import razorpay

from config import RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET, RAZORPAY_CURRENCY
from pricing import round_half_up

logger = logging.getLogger(__name__)

razorpay_client = razorpay.Client(auth=(RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET))


class PaymentGatewayError(Exception):
    """Razorpay rejected the call or could not be reached."""


def to_paise(amount: float) -> int:
    return round_half_up(float(amount) * 100)


def create_razorpay_order(order_id: int, amount: float) -> dict:
    """
    Create the Razorpay order the client opens checkout with.
    The receipt ties it back to our own order number.
    """
    payload = {
        "amount": to_paise(amount),
        "currency": RAZORPAY_CURRENCY,
        "receipt": f"receipt_{order_id}",
    }
    try:
        return razorpay_client.order.create(payload)
    except Exception as e:
        logger.error("Razorpay order create failed for #%s: %r", order_id, e)
        raise PaymentGatewayError("Payment gateway unavailable. Please try again.") from e


def verify_payment_signature(razorpay_order_id: str, razorpay_payment_id: str, razorpay_signature: str) -> bool:
    # HMAC-SHA256 of "order_id|payment_id" with the key secret
    try:
        razorpay_client.utility.verify_payment_signature({
            "razorpay_order_id": razorpay_order_id,
            "razorpay_payment_id": razorpay_payment_id,
            "razorpay_signature": razorpay_signature,
        })
        return True
    except razorpay.errors.SignatureVerificationError:
        logger.warning("Invalid Razorpay signature for order %s", razorpay_order_id)
        return False


def refund_payment(payment_id: str, amount: float | None = None) -> dict:
    """
    Full refund unless `amount` (rupees) is given.
    """
    data = {}
    if amount is not None:
        data["amount"] = to_paise(amount)
    try:
        return razorpay_client.payment.refund(payment_id, data)
    except Exception as e:
        logger.error("Razorpay refund failed for payment %s: %r", payment_id, e)
        raise PaymentGatewayError("Refund could not be initiated with the payment gateway.") from e
