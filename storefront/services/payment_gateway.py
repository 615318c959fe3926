# storefront/services/payment_gateway.py
from decimal import Decimal
from typing import Any, Dict, Optional

import stripe

from storefront.domain.errors import PaymentGatewayError
from storefront.domain.pricing import to_minor_units
from storefront.utils.retry import gateway_retry
from storefront.utils.settings import STRIPE_SECRET_KEY, STRIPE_API_VERSION, CURRENCY
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class PaymentGateway:
    """
    Adapter na Stripe: payment intent, klient, kupony.
    Kazdy blad Stripe zamieniany na PaymentGatewayError.
    """

    def __init__(self, api_key: str | None = None, currency: str = CURRENCY):
        self.api_key = api_key or STRIPE_SECRET_KEY
        self.currency = currency.lower()

    def _opts(self) -> Dict[str, Any]:
        return {"api_key": self.api_key, "stripe_version": STRIPE_API_VERSION}

    # ------------------------------------------------------------ surowe wywolania

    @gateway_retry()
    def _create_intent(self, params: Dict[str, Any]):
        return stripe.PaymentIntent.create(**params, **self._opts())

    @gateway_retry()
    def _modify_intent(self, intent_id: str, params: Dict[str, Any]):
        return stripe.PaymentIntent.modify(intent_id, **params, **self._opts())

    @gateway_retry()
    def _find_customer(self, email: str):
        return stripe.Customer.list(email=email, limit=1, **self._opts())

    @gateway_retry()
    def _create_customer(self, email: str, metadata: Dict[str, str]):
        return stripe.Customer.create(email=email, metadata=metadata, **self._opts())

    @gateway_retry()
    def _retrieve_coupon(self, code: str):
        return stripe.Coupon.retrieve(code, **self._opts())

    # ------------------------------------------------------------ API

    def create_payment_intent(
        self,
        amount: Decimal,
        currency: str | None,
        metadata: Dict[str, str],
        customer_id: Optional[str] = None,
        setup_future_usage: Optional[str] = None,
    ) -> Dict[str, str]:
        params: Dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": (currency or self.currency).lower(),
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        if customer_id:
            params["customer"] = customer_id
        if setup_future_usage:
            params["setup_future_usage"] = setup_future_usage

        logger.info(f"Create payment intent amount={params['amount']} order={metadata.get('order_id')}")
        try:
            intent = self._create_intent(params)
        except stripe.StripeError as e:
            logger.error(f"Stripe create intent failed: {e}")
            raise PaymentGatewayError(f"Payment provider error: {e.user_message or e}") from e

        return {"id": intent.id, "client_secret": intent.client_secret}

    def update_payment_intent(
        self,
        intent_id: str,
        amount: Decimal,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Dict[str, str]:
        params: Dict[str, Any] = {"amount": to_minor_units(amount)}
        if metadata:
            params["metadata"] = metadata

        logger.info(f"Update payment intent {intent_id} amount={params['amount']}")
        try:
            intent = self._modify_intent(intent_id, params)
        except stripe.StripeError as e:
            logger.error(f"Stripe update intent {intent_id} failed: {e}")
            raise PaymentGatewayError(f"Payment provider error: {e.user_message or e}") from e

        return {"id": intent.id, "client_secret": intent.client_secret}

    def get_or_create_customer(self, email: str, metadata: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        try:
            existing = self._find_customer(email)
            if existing.data:
                return {"id": existing.data[0].id}

            created = self._create_customer(email, metadata or {})
        except stripe.StripeError as e:
            logger.error(f"Stripe customer lookup for {email} failed: {e}")
            raise PaymentGatewayError(f"Payment provider error: {e.user_message or e}") from e

        logger.info(f"Created Stripe customer {created.id}")
        return {"id": created.id}

    def retrieve_coupon(self, code: str) -> Optional[Dict[str, Any]]:
        """Kupon z katalogu Stripe, None gdy nie istnieje albo niewazny."""
        try:
            coupon = self._retrieve_coupon(code)
        except stripe.StripeError as e:
            logger.info(f"Stripe coupon {code} not usable: {e}")
            return None

        if not coupon.valid:
            return None

        if coupon.percent_off:
            return {"code": code, "type": "percentage", "value": Decimal(str(coupon.percent_off))}
        return {"code": code, "type": "fixed", "value": Decimal(coupon.amount_off) / 100}
