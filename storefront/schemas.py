from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from storefront.cart_store import LineItem
from storefront.pricing import format_amount, line_total


class AddItemRequest(BaseModel):
    """Request model for adding a product to the cart."""

    product_id: str


class UpdateQuantityRequest(BaseModel):
    """Request model for updating item quantity."""

    quantity: int


class CartItemResponse(BaseModel):
    """Response model for cart item."""

    product_id: str
    name: str
    unit_price: str
    quantity: int
    item_total: str
    thumbnail_ref: Optional[str] = None

    @classmethod
    def from_item(cls, item: LineItem) -> "CartItemResponse":
        return cls(
            product_id=item.product_id,
            name=item.name,
            unit_price=format_amount(item.unit_price),
            quantity=item.quantity,
            item_total=format_amount(line_total(item)),
            thumbnail_ref=item.thumbnail_ref,
        )


class CartResponse(BaseModel):
    """Response model for cart."""

    visitor_id: str
    items: List[CartItemResponse]
    total_amount: str
    item_count: int
    degraded: bool = False


class SubmitCheckoutRequest(BaseModel):
    """Buyer fields. All optional so a retry can reuse the previous buyer."""

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class GatewayCallbackRequest(BaseModel):
    """Terminal callback posted by the hosted payment page."""

    outcome: str  # success, error, cancel
    payload: Dict[str, Any] = {}


class CheckoutResponse(BaseModel):
    """Projection of a checkout session."""

    visitor_id: str
    state: str
    view: str
    can_submit: bool
    order_id: Optional[str] = None
    total_amount: Optional[str] = None
    redirect_url: Optional[str] = None
    receipt: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    errors: Optional[Dict[str, str]] = None


class CategoryResponse(BaseModel):
    id: str
    name: str
    subcategories: List[str]


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str
    service: str
    version: str
    catalog_backend: str
    payment_gateway: str
