"""
records.py - Storefront Record Definitions

PURPOSE:
    Pydantic models for the records the storefront core reads from and writes
    to the Catalog Service, plus the checkout values passed between the
    Checkout Session, the Payment Gateway and the Order Reconciler.

RECORDS:
    - ProductRecord / ProductInput: catalog products and the admin payload
    - ProductFilter: immutable category/subcategory/status query parameters
    - BuyerInfo: buyer fields collected at checkout
    - CheckoutIntent: frozen snapshot handed to the payment gateway
    - PaymentResult: translated gateway success payload
    - OrderRecord: order persisted after a confirmed payment
    - Receipt: what the visitor sees after the order is recorded

MONEY:
    All amounts are Decimal. They serialize to JSON as strings so a round
    trip through Redis or the API never goes through float.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from storefront.cart_store import LineItem, ProductUnit
from storefront.errors import ProductValidationError

WILDCARDS = {"all"}

# Storefront category tree; "All" under a category means no subcategory filter
CATEGORIES: Dict[str, Dict[str, Any]] = {
    "html-css-js": {
        "name": "HTML/CSS/JS Projects",
        "subcategories": ["All", "Portfolio", "UI/UX & Design", "Web Apps", "Games & Fun", "E-commerce", "Tools & Utilities", "Trending"],
    },
    "python": {
        "name": "Python Projects",
        "subcategories": ["All", "Beginner", "Web/Backend", "Data & Analytics", "AI/ML", "Games", "Automation"],
    },
    "opensource": {
        "name": "Open Source Projects",
        "subcategories": ["All", "Web Templates", "Python Scripts", "UI Components", "Tools & Utilities"],
    },
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_order_id() -> str:
    return f"ORD-{uuid4().hex[:12].upper()}"


class ProductFilter(BaseModel):
    """Query parameters for product listing. A fresh result is computed per call."""

    model_config = ConfigDict(frozen=True)

    category: Optional[str] = None
    subcategory: Optional[str] = None
    status: str = "active"

    @property
    def category_value(self) -> Optional[str]:
        return _unless_wildcard(self.category)

    @property
    def subcategory_value(self) -> Optional[str]:
        return _unless_wildcard(self.subcategory)

    def matches(self, product: "ProductRecord") -> bool:
        if product.status != self.status:
            return False
        if self.category_value is not None and product.main_category != self.category_value:
            return False
        if self.subcategory_value is not None and product.subcategory != self.subcategory_value:
            return False
        return True


def _unless_wildcard(value: Optional[str]) -> Optional[str]:
    if value is None or value.strip().lower() in WILDCARDS or not value.strip():
        return None
    return value


class ProductRecord(BaseModel):
    """Product as returned by the Catalog Service."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    main_category: str
    subcategory: str
    price: Decimal = Field(ge=0)
    images: List[str] = Field(default_factory=list)
    download_url: Optional[str] = None
    live_demo_url: Optional[str] = None
    is_opensource: bool = False
    status: str = "active"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_unit(self) -> ProductUnit:
        """Per-unit data copied into the cart."""
        return ProductUnit(
            name=self.name,
            unit_price=self.price,
            thumbnail_ref=self.images[0] if self.images else None,
            download_ref=self.download_url,
        )


class ProductInput(BaseModel):
    """Admin create/update payload."""

    name: str = ""
    description: str = ""
    main_category: str = ""
    subcategory: str = ""
    images: List[str] = Field(default_factory=list)
    download_url: Optional[str] = None
    live_demo_url: Optional[str] = None
    is_opensource: bool = False
    price: Decimal = Field(default=Decimal("0"), ge=0)
    status: Literal["active", "inactive"] = "active"

    def cleaned(self) -> Dict[str, Any]:
        """Column values for storage. Raises ProductValidationError on missing fields."""
        missing = [field for field in ("name", "main_category", "subcategory") if not getattr(self, field).strip()]
        if missing:
            raise ProductValidationError(missing)

        values = self.model_dump()
        values["name"] = self.name.strip()
        values["images"] = [url.strip() for url in self.images if url.strip()]
        values["live_demo_url"] = self.live_demo_url or None
        # Open source products are always free
        if self.is_opensource:
            values["price"] = Decimal("0")
        return values


class BuyerInfo(BaseModel):
    """Buyer fields collected on the checkout form."""

    name: str = ""
    email: str = ""
    phone: Optional[str] = None


class CheckoutIntent(BaseModel):
    """Immutable order intent handed to the payment gateway."""

    model_config = ConfigDict(frozen=True)

    order_id: str = Field(default_factory=new_order_id)
    buyer_name: str
    buyer_email: str
    buyer_phone: Optional[str] = None
    items: Tuple[LineItem, ...]
    total: Decimal
    currency: str = "USD"
    created_at: datetime = Field(default_factory=utcnow)


class PaymentResult(BaseModel):
    """Gateway success payload after translation."""

    model_config = ConfigDict(frozen=True)

    order_id: str
    transaction_reference: str
    amount: Optional[Decimal] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class PaymentStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OrderRecord(BaseModel):
    """Order row written to the catalog's orders collection."""

    order_id: str
    buyer_name: str
    buyer_email: str
    buyer_phone: Optional[str] = None
    total: Decimal
    currency: str = "USD"
    payment_status: PaymentStatus
    payment_reference: str
    items: List[LineItem]
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ReceiptLine(BaseModel):
    name: str
    quantity: int
    download_ref: Optional[str] = None


class Receipt(BaseModel):
    """Receipt view after a recorded order."""

    order_id: str
    transaction_reference: str
    total: str
    currency: str = "USD"
    items: List[ReceiptLine]
