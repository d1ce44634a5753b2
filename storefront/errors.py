"""Error kinds surfaced by the storefront core.

Every failure at a network boundary (Redis, the catalog database, the payment
gateway) is caught by the component that made the call and re-raised as one
of these, so callers never see raw provider exceptions.
"""

from typing import Dict, List, Optional


class StorefrontError(Exception):
    """Base class for storefront errors."""


class ValidationError(StorefrontError):
    """Buyer input rejected. Recoverable; the session stays awaiting input."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__("; ".join(f"{field}: {msg}" for field, msg in errors.items()))


class EmptyCartError(StorefrontError):
    """Checkout entered with an empty cart."""

    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class CheckoutInProgressError(StorefrontError):
    """A gateway attempt is already outstanding for this session."""

    def __init__(self, message: str = "Payment already in progress"):
        super().__init__(message)


class CheckoutStateError(StorefrontError):
    """Operation not allowed in the session's current state."""


class GatewayError(StorefrontError):
    """Payment provider failure. Recoverable; the cart is left untouched."""

    def __init__(self, message: str, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(message)


class PersistenceError(StorefrontError):
    """Order write failed after payment was captured. Never retried automatically."""

    def __init__(self, order_id: str, transaction_reference: str, support_email: str, cause: Optional[str] = None):
        self.order_id = order_id
        self.transaction_reference = transaction_reference
        self.support_email = support_email
        self.cause = cause
        super().__init__(
            f"Payment succeeded but the order record could not be saved. "
            f"Please contact {support_email} with order {order_id} "
            f"and transaction {transaction_reference}."
        )


class StorageUnavailable(StorefrontError):
    """Client-local cart storage cannot be read or written."""


class CatalogError(StorefrontError):
    """Catalog backend rejected or failed a request."""


class CatalogUnavailable(CatalogError):
    """Catalog backend cannot be reached at all."""


class ProductNotFound(CatalogError):
    """No product with the requested id."""

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class ProductValidationError(CatalogError):
    """Admin product payload is incomplete."""

    def __init__(self, missing: List[str]):
        self.missing = missing
        super().__init__(f"Missing required fields: {', '.join(missing)}")
