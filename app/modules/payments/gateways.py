"""
Card gateways.

CardGateway is the seam between CardPaymentService and the acquirer.
SimulatedCardGateway approves or declines by card number so tills and
tests work without network access; StripeCardGateway talks to Stripe.
"""
from decimal import Decimal
from typing import Optional, Dict, Any
import hashlib
import hmac
import json
import logging
import secrets

import stripe

from app.core.config import settings
from app.common.utils import epoch_millis

logger = logging.getLogger(__name__)

# Stripe style test tokens understood by the simulated gateway
SIMULATED_TOKENS = {
    "tok_visa": "4242424242424242",
    "tok_mastercard": "5555555555554444",
    "tok_amex": "378282246310005",
    "tok_chargeDeclined": "4000000000000002",
    "tok_chargeDeclinedExpiredCard": "4000000000000069",
}


def luhn_valid(number: str) -> bool:
    if not number or not number.isdigit():
        return False
    total = 0
    for index, char in enumerate(reversed(number)):
        digit = int(char)
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def card_brand(number: str) -> str:
    """Brand from the BIN prefix."""
    if number.startswith("4"):
        return "visa"
    if number[:2] in ("51", "52", "53", "54", "55"):
        return "mastercard"
    if number[:2] in ("34", "37"):
        return "amex"
    return "unknown"


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value())


def _charge_result(success: bool, reference: Optional[str] = None, last4: Optional[str] = None,
                   brand: Optional[str] = None, error: Optional[str] = None) -> Dict[str, Any]:
    return {"success": success, "reference": reference, "last4": last4, "brand": brand, "error": error}


class CardGateway:
    """Interface every card gateway implements."""

    name = "base"

    def create_intent(self, amount: Decimal, currency: str, metadata: Dict[str, str]) -> Dict[str, str]:
        raise NotImplementedError

    def charge(self, intent_id: str, amount: Decimal, card: Optional[Dict[str, Any]] = None,
               card_token: Optional[str] = None) -> Dict[str, Any]:
        raise NotImplementedError

    def refund(self, reference: str, amount: Decimal, reason: Optional[str] = None) -> Dict[str, Any]:
        raise NotImplementedError

    def cancel(self, intent_id: str) -> None:
        raise NotImplementedError

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Parsed event, or ValueError when the signature does not match."""
        raise NotImplementedError


class SimulatedCardGateway(CardGateway):
    """
    Offline gateway with deterministic outcomes:

    - numbers ending 0002 are declined
    - numbers ending 0069 are expired
    - numbers failing the Luhn check are invalid
    - everything else is approved
    """

    name = "simulated"

    def __init__(self, webhook_secret: Optional[str] = None):
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

    def create_intent(self, amount, currency, metadata):
        intent_id = f"pi_sim_{secrets.token_hex(8)}"
        return {"intent_id": intent_id, "client_secret": f"{intent_id}_secret_{secrets.token_hex(8)}"}

    def charge(self, intent_id, amount, card=None, card_token=None):
        if card_token:
            number = SIMULATED_TOKENS.get(card_token)
            if number is None:
                return _charge_result(False, error=f"Unknown card token: {card_token}")
        elif card:
            number = card["number"]
        else:
            return _charge_result(False, error="Card details or token required")

        last4, brand = number[-4:], card_brand(number)
        if number.endswith("0002"):
            return _charge_result(False, last4=last4, brand=brand, error="Your card was declined")
        if number.endswith("0069"):
            return _charge_result(False, last4=last4, brand=brand, error="Your card has expired")
        if not luhn_valid(number):
            return _charge_result(False, last4=last4, brand=brand, error="Invalid card number")

        logger.info(f"[simulated gateway] charged {amount} on {brand} ending {last4}")
        return _charge_result(True, reference=f"ch_sim_{epoch_millis()}", last4=last4, brand=brand)

    def refund(self, reference, amount, reason=None):
        return {"success": True, "refund_id": f"re_sim_{epoch_millis()}", "error": None}

    def cancel(self, intent_id):
        logger.info(f"[simulated gateway] cancelled {intent_id}")

    def sign(self, payload: bytes) -> str:
        return hmac.new(self.webhook_secret.encode(), payload, hashlib.sha256).hexdigest()

    def verify_webhook(self, payload, signature):
        if not signature or not hmac.compare_digest(self.sign(payload), signature):
            raise ValueError("Invalid webhook signature")
        try:
            return json.loads(payload)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid webhook payload: {e}")


class StripeCardGateway(CardGateway):
    """Stripe PaymentIntents. Raw card numbers never reach this server; tills send a token."""

    name = "stripe"

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        stripe.api_key = api_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET

    def create_intent(self, amount, currency, metadata):
        intent = stripe.PaymentIntent.create(
            amount=to_minor_units(amount),
            currency=currency.lower(),
            metadata=metadata,
            automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
        )
        logger.info(f"Stripe intent {intent.id} created for {amount} {currency}")
        return {"intent_id": intent.id, "client_secret": intent.client_secret}

    def charge(self, intent_id, amount, card=None, card_token=None):
        if not card_token:
            return _charge_result(False, error="Stripe payments require a card token")
        try:
            intent = stripe.PaymentIntent.confirm(intent_id, payment_method=card_token)
        except stripe.CardError as e:
            return _charge_result(False, error=e.user_message or str(e))
        except stripe.StripeError as e:
            logger.error(f"Stripe error confirming {intent_id}: {str(e)}")
            return _charge_result(False, error=str(e))

        if intent.status != "succeeded":
            error = intent.last_payment_error.message if intent.last_payment_error else f"Payment {intent.status}"
            return _charge_result(False, error=error)

        last4 = brand = None
        if intent.latest_charge:
            charge = stripe.Charge.retrieve(intent.latest_charge)
            details = (charge.payment_method_details or {}).get("card") or {}
            last4, brand = details.get("last4"), details.get("brand")
        return _charge_result(True, reference=intent.id, last4=last4, brand=brand)

    def refund(self, reference, amount, reason=None):
        try:
            refund = stripe.Refund.create(
                payment_intent=reference,
                amount=to_minor_units(amount),
                reason="requested_by_customer",
                metadata={"reason": reason or ""},
            )
            return {"success": True, "refund_id": refund.id, "error": None}
        except stripe.StripeError as e:
            logger.error(f"Stripe refund failed for {reference}: {str(e)}")
            return {"success": False, "refund_id": None, "error": str(e)}

    def cancel(self, intent_id):
        stripe.PaymentIntent.cancel(intent_id)

    def verify_webhook(self, payload, signature):
        try:
            return stripe.Webhook.construct_event(payload=payload, sig_header=signature, secret=self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise ValueError(f"Invalid webhook signature: {str(e)}")


def get_card_gateway(name: Optional[str] = None) -> CardGateway:
    name = (name or settings.CARD_GATEWAY).lower()
    if name == "stripe":
        return StripeCardGateway()
    if name == "simulated":
        return SimulatedCardGateway()
    raise ValueError(f"Unknown card gateway: {name}")
