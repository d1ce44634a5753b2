"""
checkout.py - Checkout Session State Machine

STATES:
    IDLE ──begin()──> AWAITING_INPUT ──submit()──> AWAITING_GATEWAY ──> SUCCEEDED
                          ^                                         ├──> FAILED
                          └───────────────retry()───────────────────┴──> CANCELLED

TRANSITIONS:
    - begin(): needs a non-empty cart, otherwise EmptyCartError and no intent
    - submit(): buyer name non-empty and email shaped like local@domain.tld,
      otherwise ValidationError and the session stays in AWAITING_INPUT. The
      buyer from the previous attempt is reused when none is passed.
    - gateway success: the Order Reconciler records the order. The session is
      SUCCEEDED either way; a failed write is exposed as the support_required
      view instead of the receipt, and begin() is refused from then on so the
      same cart is never charged twice. An unreadable or mismatched amount
      in the payload is logged, never raised.
    - gateway error: FAILED, cart untouched, retry() goes back to AWAITING_INPUT
    - gateway cancel: CANCELLED, cart untouched, retry() as above

INVARIANTS:
    - At most one outstanding gateway attempt. submit() while AWAITING_GATEWAY
      raises CheckoutInProgressError (can_submit is False), so a double click
      never charges twice.
    - One terminal callback per intent: callbacks that arrive with no attempt
      outstanding, or for another order id, are logged and dropped.
    - Raw gateway payloads are translated into PaymentResult / GatewayError
      before they reach the reconciler.
"""

import logging
import re
import threading
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional

from storefront import pricing
from storefront.cart_store import CartStore
from storefront.errors import (
    CheckoutInProgressError,
    CheckoutStateError,
    EmptyCartError,
    GatewayError,
    PersistenceError,
    StorefrontError,
    ValidationError,
)
from storefront.payment_gateway import GatewayListener, GatewayTicket, PaymentGateway
from storefront.reconciler import OrderReconciler
from storefront.records import BuyerInfo, CheckoutIntent, PaymentResult, Receipt

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DEFAULT_GATEWAY_ERROR = "Payment processing failed. Please try again."


class CheckoutState(str, Enum):
    IDLE = "idle"
    AWAITING_INPUT = "awaiting_input"
    AWAITING_GATEWAY = "awaiting_gateway"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CheckoutView(str, Enum):
    """What the checkout page should show."""

    IDLE = "idle"
    FORM = "form"
    PROCESSING = "processing"
    RECEIPT = "receipt"
    SUPPORT_REQUIRED = "support_required"
    PAYMENT_FAILED = "payment_failed"
    CANCELLED = "cancelled"


def validate_buyer(buyer: BuyerInfo) -> BuyerInfo:
    """Return the trimmed buyer or raise ValidationError."""
    name = buyer.name.strip()
    email = buyer.email.strip()
    phone = buyer.phone.strip() if buyer.phone else None

    errors: Dict[str, str] = {}
    if not name:
        errors["name"] = "Name is required"
    if not email:
        errors["email"] = "Email is required"
    elif not EMAIL_PATTERN.match(email):
        errors["email"] = "Please enter a valid email address"
    if errors:
        raise ValidationError(errors)

    return BuyerInfo(name=name, email=email, phone=phone or None)


def parse_amount(value: Any) -> Optional[Decimal]:
    """Gateway-reported amount as Decimal, or None when absent or unreadable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        logger.warning(f"Ignoring unreadable gateway amount {value!r}")
        return None
    if not amount.is_finite():
        logger.warning(f"Ignoring unreadable gateway amount {value!r}")
        return None
    return amount


def translate_gateway_error(payload: Any) -> GatewayError:
    if isinstance(payload, GatewayError):
        return payload
    if isinstance(payload, dict):
        return GatewayError(payload.get("message") or DEFAULT_GATEWAY_ERROR, reason=payload.get("code"))
    if isinstance(payload, Exception) and str(payload):
        return GatewayError(str(payload), reason=payload.__class__.__name__)
    return GatewayError(DEFAULT_GATEWAY_ERROR)


class CheckoutSession(GatewayListener):
    """Checkout for one visitor's cart."""

    def __init__(self, cart: CartStore, gateway: PaymentGateway, reconciler: OrderReconciler, currency: str = "USD"):
        self.cart = cart
        self.gateway = gateway
        self.reconciler = reconciler
        self.currency = currency

        self.state = CheckoutState.IDLE
        self.buyer: Optional[BuyerInfo] = None
        self.intent: Optional[CheckoutIntent] = None
        self.ticket: Optional[GatewayTicket] = None
        self.receipt: Optional[Receipt] = None
        self.error: Optional[StorefrontError] = None
        # gateways may call back from inside open()
        self._lock = threading.RLock()

    @property
    def can_submit(self) -> bool:
        return self.state == CheckoutState.AWAITING_INPUT

    @property
    def view(self) -> CheckoutView:
        if self.state == CheckoutState.AWAITING_INPUT:
            return CheckoutView.FORM
        if self.state == CheckoutState.AWAITING_GATEWAY:
            return CheckoutView.PROCESSING
        if self.state == CheckoutState.SUCCEEDED:
            return CheckoutView.SUPPORT_REQUIRED if isinstance(self.error, PersistenceError) else CheckoutView.RECEIPT
        if self.state == CheckoutState.FAILED:
            return CheckoutView.PAYMENT_FAILED
        if self.state == CheckoutState.CANCELLED:
            return CheckoutView.CANCELLED
        return CheckoutView.IDLE

    def begin(self) -> CheckoutState:
        """Enter checkout. An empty cart never gets past IDLE."""
        with self._lock:
            if self.state == CheckoutState.AWAITING_GATEWAY:
                raise CheckoutInProgressError()
            if self.view == CheckoutView.SUPPORT_REQUIRED:
                # Payment for this cart was captured; it must not be charged again
                raise CheckoutStateError(str(self.error))
            if self.cart.is_empty():
                self.state = CheckoutState.IDLE
                raise EmptyCartError()
            self.state = CheckoutState.AWAITING_INPUT
            self.intent = None
            self.ticket = None
            self.receipt = None
            self.error = None
            return self.state

    def submit(self, buyer: Optional[BuyerInfo] = None) -> GatewayTicket:
        """Validate buyer data, freeze an intent and open the payment gateway."""
        with self._lock:
            if self.state == CheckoutState.AWAITING_GATEWAY:
                raise CheckoutInProgressError()
            if self.state != CheckoutState.AWAITING_INPUT:
                raise CheckoutStateError(f"Cannot submit checkout while {self.state.value}")

            try:
                validated = validate_buyer(buyer or self.buyer or BuyerInfo())
            except ValidationError as e:
                self.error = e
                raise

            items = self.cart.snapshot()
            if not items:
                self.state = CheckoutState.IDLE
                raise EmptyCartError()

            self.buyer = validated
            intent = CheckoutIntent(
                buyer_name=validated.name,
                buyer_email=validated.email,
                buyer_phone=validated.phone,
                items=items,
                total=pricing.total(items),
                currency=self.currency,
            )
            self.intent = intent
            self.error = None
            self.state = CheckoutState.AWAITING_GATEWAY
            logger.info(
                f"Opening payment for order {intent.order_id}, total {pricing.format_amount(intent.total)}",
                extra={"order_id": intent.order_id},
            )

            try:
                ticket = self.gateway.open(intent, self)
            except GatewayError as e:
                if self._claim({"orderId": intent.order_id}) is not None:
                    self._fail(e, intent)
                raise

            self.ticket = ticket
            return ticket

    def retry(self) -> CheckoutState:
        """Back to the form after a failed or cancelled payment, keeping buyer data."""
        with self._lock:
            if self.state not in (CheckoutState.FAILED, CheckoutState.CANCELLED):
                raise CheckoutStateError(f"Nothing to retry while {self.state.value}")
            if self.cart.is_empty():
                self.state = CheckoutState.IDLE
                raise EmptyCartError()
            self.state = CheckoutState.AWAITING_INPUT
            self.intent = None
            self.ticket = None
            self.error = None
            return self.state

    def on_gateway_success(self, payload: Dict[str, Any]) -> Optional[Receipt]:
        with self._lock:
            intent = self._claim(payload)
            if intent is None:
                return None

            reference = payload.get("transactionId") or payload.get("transaction_id")
            if not reference:
                self._fail(GatewayError("Payment provider returned no transaction reference", reason="malformed"), intent)
                return None

            amount = parse_amount(payload.get("amount"))
            if amount is not None and amount != intent.total:
                logger.warning(
                    f"Gateway reported {amount} for order {intent.order_id}, expected {pricing.format_amount(intent.total)}",
                    extra={"order_id": intent.order_id},
                )
            result = PaymentResult(
                order_id=intent.order_id,
                transaction_reference=str(reference),
                amount=amount,
                raw=dict(payload),
            )
            self.state = CheckoutState.SUCCEEDED
            try:
                self.receipt = self.reconciler.on_success(result, intent)
            except PersistenceError as e:
                self.error = e
            return self.receipt

    def on_gateway_error(self, payload: Any) -> None:
        with self._lock:
            intent = self._claim(payload if isinstance(payload, dict) else None)
            if intent is None:
                return
            self._fail(translate_gateway_error(payload), intent)

    def on_gateway_cancel(self, payload: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            intent = self._claim(payload)
            if intent is None:
                return
            self.reconciler.on_cancel(intent)
            self.state = CheckoutState.CANCELLED
            self.error = None

    def _claim(self, payload: Optional[Dict[str, Any]]) -> Optional[CheckoutIntent]:
        """The outstanding intent this callback belongs to, or None to drop it."""
        if self.state != CheckoutState.AWAITING_GATEWAY or self.intent is None:
            logger.warning(f"Ignoring gateway callback while {self.state.value}")
            return None
        order_id = None
        if payload:
            order_id = payload.get("orderId") or payload.get("order_id")
        if order_id and order_id != self.intent.order_id:
            logger.warning(
                f"Ignoring gateway callback for {order_id}, outstanding order is {self.intent.order_id}",
                extra={"order_id": order_id},
            )
            return None
        return self.intent

    def _fail(self, error: GatewayError, intent: CheckoutIntent) -> None:
        self.error = self.reconciler.on_error(error, intent)
        self.state = CheckoutState.FAILED
