"""
reconciler.py - Order Reconciliation After a Payment Attempt

PURPOSE:
    Acts on the single terminal callback of a payment attempt.

SUCCESS FLOW (on_success):
    1. Build an OrderRecord from the CheckoutIntent and the gateway's
       transaction reference (payment_status = completed)
    2. Insert it through the Catalog Service
    3. Insert succeeded: clear the visitor's cart and return a Receipt with the
       order id, transaction reference, total and per-item download links
    4. Insert failed: funds are already captured, so the cart is left exactly
       as it was and a PersistenceError carrying the support-contact message
       is raised. The write is never retried automatically; a retried write
       after an unknown partial write could record the order twice.

IDEMPOTENCY:
    - Receipts are remembered by order_id; a repeated success callback for
      the same order returns the first receipt without writing
    - An order the catalog already holds is not inserted again
    - A repeated success callback for an order whose write failed re-raises
      the same PersistenceError without writing

ERROR / CANCEL FLOW (on_error, on_cancel):
    Never touch the cart. The session returns to a retryable state.
"""

import logging
import threading
from typing import Dict, Optional

from storefront.cart_store import CartStore
from storefront.catalog import CatalogService
from storefront.errors import CatalogError, GatewayError, PersistenceError
from storefront.pricing import format_amount
from storefront.records import (
    CheckoutIntent,
    OrderRecord,
    PaymentResult,
    PaymentStatus,
    Receipt,
    ReceiptLine,
    utcnow,
)

logger = logging.getLogger(__name__)


def build_order_record(intent: CheckoutIntent, result: PaymentResult) -> OrderRecord:
    now = utcnow()
    return OrderRecord(
        order_id=intent.order_id,
        buyer_name=intent.buyer_name,
        buyer_email=intent.buyer_email,
        buyer_phone=intent.buyer_phone,
        total=intent.total,
        currency=intent.currency,
        payment_status=PaymentStatus.COMPLETED,
        payment_reference=result.transaction_reference,
        items=list(intent.items),
        created_at=now,
        updated_at=now,
    )


def build_receipt(intent: CheckoutIntent, transaction_reference: str) -> Receipt:
    return Receipt(
        order_id=intent.order_id,
        transaction_reference=transaction_reference,
        total=format_amount(intent.total),
        currency=intent.currency,
        items=[
            ReceiptLine(name=item.name, quantity=item.quantity, download_ref=item.download_ref)
            for item in intent.items
        ],
    )


class OrderReconciler:
    """Records confirmed orders and clears the cart they came from."""

    def __init__(self, catalog: CatalogService, cart: CartStore, support_email: str):
        self.catalog = catalog
        self.cart = cart
        self.support_email = support_email
        self._receipts: Dict[str, Receipt] = {}
        self._failed: Dict[str, PersistenceError] = {}
        self._lock = threading.Lock()

    def on_success(self, result: PaymentResult, intent: CheckoutIntent) -> Receipt:
        """Persist the order for a captured payment. Raises PersistenceError if the write fails."""
        order_id = intent.order_id
        log_extra = {"order_id": order_id}

        with self._lock:
            if order_id in self._receipts:
                logger.info(f"Order {order_id} already reconciled", extra=log_extra)
                return self._receipts[order_id]

            if order_id in self._failed:
                logger.warning(f"Order {order_id} write failed earlier, not retrying", extra=log_extra)
                raise self._failed[order_id]

            try:
                existing = self.catalog.get_order(order_id)
                if existing is None:
                    self.catalog.insert_order(build_order_record(intent, result))
                    logger.info(f"Order {order_id} recorded", extra=log_extra)
                else:
                    logger.info(f"Order {order_id} already in catalog, skipping insert", extra=log_extra)
            except CatalogError as e:
                error = PersistenceError(order_id, result.transaction_reference, self.support_email, cause=str(e))
                self._failed[order_id] = error
                logger.critical(
                    f"Payment {result.transaction_reference} captured but order {order_id} was not recorded: {e}",
                    extra=log_extra,
                )
                raise error from e

            receipt = build_receipt(intent, result.transaction_reference)
            self._receipts[order_id] = receipt

        self.cart.clear()
        return receipt

    def on_error(self, error: GatewayError, intent: Optional[CheckoutIntent]) -> GatewayError:
        """Payment failed. The cart is kept for a retry."""
        order_id = intent.order_id if intent else None
        logger.warning(f"Payment failed for order {order_id}: {error}", extra={"order_id": order_id})
        return error

    def on_cancel(self, intent: Optional[CheckoutIntent]) -> None:
        """Payment cancelled by the visitor. The cart is kept."""
        order_id = intent.order_id if intent else None
        logger.info(f"Payment cancelled for order {order_id}", extra={"order_id": order_id})

    def receipt_for(self, order_id: str) -> Optional[Receipt]:
        with self._lock:
            return self._receipts.get(order_id)
