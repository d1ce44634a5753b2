"""
payment_gateway.py - Hosted Payment Gateway Adapters

PURPOSE:
    Hands an immutable CheckoutIntent to a payment provider and arranges for
    exactly one terminal callback (success, error or cancel) to reach the
    checkout session that opened the attempt.

GATEWAYS:
    - SimulatedGateway: resolves the attempt in-process, 80% success by
      default, with a random failure reason otherwise. Used for local runs
      and demos.
    - HostedGateway: builds the redirect URL for the provider's hosted
      checkout page. The provider later POSTs the terminal callback to
      /checkout/{visitor_id}/callback, which the API routes to the session.

CALLBACK PAYLOADS (raw, as the provider sends them):
    success: {"orderId": "ORD-...", "transactionId": "TXN-...", "amount": "49.99"}
    error:   {"orderId": "ORD-...", "message": "Card declined", "code": "card_declined"}
    cancel:  {"orderId": "ORD-..."}

    The session translates these before they reach the reconciler.
"""

import logging
import random
from typing import Any, Dict, Optional
from urllib.parse import urlencode
from uuid import uuid4

from pydantic import BaseModel

from storefront.errors import GatewayError
from storefront.pricing import format_amount
from storefront.records import CheckoutIntent

logger = logging.getLogger(__name__)


class GatewayListener:
    """Receiver of the single terminal callback for an attempt."""

    def on_gateway_success(self, payload: Dict[str, Any]) -> Any:
        raise NotImplementedError

    def on_gateway_error(self, payload: Any) -> Any:
        raise NotImplementedError

    def on_gateway_cancel(self, payload: Optional[Dict[str, Any]] = None) -> Any:
        raise NotImplementedError


class GatewayTicket(BaseModel):
    """What the visitor needs to continue an attempt."""

    order_id: str
    mode: str
    redirect_url: Optional[str] = None


class PaymentGateway:
    """Payment provider adapter."""

    def open(self, intent: CheckoutIntent, listener: GatewayListener) -> GatewayTicket:
        """Start a payment attempt. Raises GatewayError if it cannot be started."""
        raise NotImplementedError


class SimulatedGateway(PaymentGateway):
    """Simulated payment processor with 80% success rate."""

    SUCCESS_RATE = 0.8
    FAILURE_REASONS = ["insufficient_funds", "card_declined", "expired_card"]

    def __init__(self, success_rate: Optional[float] = None, rng: Optional[random.Random] = None):
        self.success_rate = self.SUCCESS_RATE if success_rate is None else success_rate
        self.rng = rng or random.Random()

    def open(self, intent: CheckoutIntent, listener: GatewayListener) -> GatewayTicket:
        ticket = GatewayTicket(order_id=intent.order_id, mode="simulated")

        if self.rng.random() >= self.success_rate:
            reason = self.rng.choice(self.FAILURE_REASONS)
            logger.info(f"Payment FAILED: {reason}", extra={"order_id": intent.order_id})
            listener.on_gateway_error(
                {"orderId": intent.order_id, "message": reason.replace("_", " ").capitalize(), "code": reason}
            )
        else:
            logger.info(f"Payment SUCCESS: ${format_amount(intent.total)}", extra={"order_id": intent.order_id})
            listener.on_gateway_success(
                {
                    "orderId": intent.order_id,
                    "transactionId": f"TXN-{uuid4().hex[:16].upper()}",
                    "amount": format_amount(intent.total),
                }
            )
        return ticket


class HostedGateway(PaymentGateway):
    """Redirect to the provider's hosted checkout; the callback arrives by webhook."""

    def __init__(self, checkout_url: str, merchant_id: str, return_url: Optional[str] = None):
        self.checkout_url = checkout_url
        self.merchant_id = merchant_id
        self.return_url = return_url

    def open(self, intent: CheckoutIntent, listener: GatewayListener) -> GatewayTicket:
        if not self.checkout_url or not self.merchant_id:
            raise GatewayError("Failed to initialize payment: gateway is not configured", reason="not_configured")

        params = {
            "merchantId": self.merchant_id,
            "orderId": intent.order_id,
            "amount": format_amount(intent.total),
            "currency": intent.currency,
            "customerName": intent.buyer_name,
            "customerEmail": intent.buyer_email,
        }
        if intent.buyer_phone:
            params["customerPhone"] = intent.buyer_phone
        if self.return_url:
            params["returnUrl"] = self.return_url

        redirect_url = f"{self.checkout_url}?{urlencode(params)}"
        logger.info(f"Opened hosted checkout for {intent.order_id}", extra={"order_id": intent.order_id})
        return GatewayTicket(order_id=intent.order_id, mode="hosted", redirect_url=redirect_url)
