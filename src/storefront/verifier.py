import stripe
from pydantic import ValidationError

from storefront.config import settings
from storefront.schemas import WebhookEvent

class InvalidSignature(Exception):
    pass

class InvalidPayload(Exception):
    pass

class StripeEventVerifier:
    """
    Checks the `Stripe-Signature` header against the raw request body and
    only then parses it. Parsing must never happen before verification.
    """

    def __init__(self, secret: str, tolerance: int = 300):
        self.secret = secret
        self.tolerance = tolerance

    def verify(self, payload: bytes, signature: str | None) -> WebhookEvent:
        if not signature:
            raise InvalidSignature("Missing Stripe-Signature header")
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidSignature("Payload is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(body, signature, self.secret, self.tolerance)
        except stripe.SignatureVerificationError as e:
            raise InvalidSignature(str(e)) from e

        try:
            return WebhookEvent.model_validate_json(body)
        except ValidationError as e:
            raise InvalidPayload(f"Unrecognised event envelope: {e.error_count()} error(s)") from e

def get_verifier() -> StripeEventVerifier:
    return StripeEventVerifier(settings.STRIPE_WEBHOOK_SECRET, settings.STRIPE_SIGNATURE_TOLERANCE)
