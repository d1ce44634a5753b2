"""
storefront/main.py - Storefront API

PURPOSE:
    JSON API for a digital-goods storefront: product browsing with category
    filters, a per-visitor cart, checkout through a hosted payment gateway,
    and an admin panel for product CRUD.

RESPONSIBILITIES:
    - List and filter products, show product details
    - Add/remove cart items, buy-now, cart totals and item counts
    - Drive the checkout session: begin, submit buyer data, receive the
      gateway's terminal callback, retry after failure or cancellation
    - Record free downloads of open source products
    - Admin create/update/delete of products

API ENDPOINTS:
    GET    /health                               - Health check endpoint
    GET    /categories                           - Category tree
    GET    /products?category=&subcategory=      - Active products, filtered
    GET    /products/{product_id}                - Product details
    POST   /products/{product_id}/download       - Free download link (open source only)
    GET    /cart/{visitor_id}                    - View cart contents
    POST   /cart/{visitor_id}/items              - Add product to cart
    PUT    /cart/{visitor_id}/items/{product_id} - Update item quantity
    DELETE /cart/{visitor_id}/items/{product_id} - Remove item from cart
    POST   /cart/{visitor_id}/buy-now            - Replace cart with one product
    DELETE /cart/{visitor_id}                    - Empty the cart
    GET    /checkout/{visitor_id}                - Checkout session state
    POST   /checkout/{visitor_id}                - Enter checkout
    POST   /checkout/{visitor_id}/submit         - Submit buyer data, open the gateway
    POST   /checkout/{visitor_id}/callback       - Gateway terminal callback
    POST   /checkout/{visitor_id}/retry          - Back to the form after failure/cancel
    GET    /admin/products                       - All products, any status
    POST   /admin/products                       - Create product
    PUT    /admin/products/{product_id}          - Update product
    DELETE /admin/products/{product_id}          - Delete product

TESTING COMMANDS:
    1. Add Item to Cart:
        curl -X POST http://localhost:8000/cart/visitor123/items \
          -H "Content-Type: application/json" \
          -d '{"product_id": "p-portfolio"}'

    2. View Cart Contents:
        curl -X GET http://localhost:8000/cart/visitor123

    3. Enter Checkout and Submit:
        curl -X POST http://localhost:8000/checkout/visitor123
        curl -X POST http://localhost:8000/checkout/visitor123/submit \
          -H "Content-Type: application/json" \
          -d '{"name": "Ada Lovelace", "email": "ada@example.com"}'

    4. Hosted Gateway Callback:
        curl -X POST http://localhost:8000/checkout/visitor123/callback \
          -H "Content-Type: application/json" \
          -d '{"outcome": "success", "payload": {"orderId": "ORD-...", "transactionId": "TXN-1"}}'

DEPENDENCIES:
    - FastAPI/uvicorn: HTTP API
    - Redis: cart slots (optional, in-memory otherwise)
    - SQLAlchemy: catalog tables (when CATALOG_BACKEND=sql)
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import redis
from fastapi import FastAPI, HTTPException, Request, status

from shared.database import init_db, make_engine, make_session_factory, session_scope
from shared.logging_config import setup_logging
from storefront import pricing
from storefront.catalog import build_catalog
from storefront.checkout import CheckoutSession, CheckoutState
from storefront.config import Settings
from storefront.errors import (
    CatalogError,
    CatalogUnavailable,
    CheckoutInProgressError,
    CheckoutStateError,
    EmptyCartError,
    GatewayError,
    PersistenceError,
    ProductNotFound,
    ProductValidationError,
    StorefrontError,
    ValidationError,
)
from storefront.models import Product
from storefront.records import CATEGORIES, BuyerInfo, ProductFilter, ProductInput, ProductRecord
from storefront.schemas import (
    AddItemRequest,
    CartItemResponse,
    CartResponse,
    CategoryResponse,
    CheckoutResponse,
    GatewayCallbackRequest,
    HealthResponse,
    SubmitCheckoutRequest,
    UpdateQuantityRequest,
)
from storefront.seed_data import sample_products
from storefront.visitors import Storefront, build_gateway

settings = Settings()

# Setup logging
setup_logging("storefront", level=settings.log_level, tz=settings.log_timezone)
logger = logging.getLogger(__name__)

SERVICE_VERSION = "1.0.0"


def build_storefront(settings: Settings) -> Storefront:
    """Wire collaborators from configuration."""
    session_factory = None
    if settings.catalog_backend == "sql":
        engine = make_engine(settings.database_url)
        init_db(engine)
        session_factory = make_session_factory(engine)
        if settings.seed_fixture_products:
            seed_catalog(session_factory)
        logger.info("Catalog database initialized")

    redis_client = None
    if settings.redis_url:
        redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
        try:
            redis_client.ping()
            logger.info("Redis connected")
        except redis.RedisError as e:
            # Carts degrade to memory per visitor; the service still starts
            logger.warning(f"Redis not reachable at startup: {e}")

    catalog = build_catalog(settings.catalog_backend, session_factory)
    return Storefront(settings, catalog, build_gateway(settings), redis_client)


def seed_catalog(session_factory) -> None:
    """Seed the products table with the fixture products if it is empty."""
    with session_scope(session_factory) as db:
        if db.query(Product).first() is not None:
            return
        for product in sample_products():
            db.add(Product(**product.model_dump(exclude={"created_at", "updated_at"})))
    logger.info("Seeded fixture products")


def create_app(storefront: Optional[Storefront] = None) -> FastAPI:
    # Two phases:
    # 1. Startup (before yield): build the storefront unless one was injected
    # 2. Shutdown (after yield): close the Redis connection
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Storefront...")
        if getattr(app.state, "storefront", None) is None:
            app.state.storefront = build_storefront(settings)
        yield
        logger.info("Shutting down Storefront...")
        app.state.storefront.close()

    app = FastAPI(title="Storefront", version=SERVICE_VERSION, lifespan=lifespan)
    app.state.storefront = storefront
    register_routes(app)
    return app


def _storefront(request: Request) -> Storefront:
    return request.app.state.storefront


def _http_error(e: StorefrontError) -> HTTPException:
    """Translate a storefront error into an HTTP response."""
    if isinstance(e, ValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": "Please fill in all required customer information.", "errors": e.errors},
        )
    if isinstance(e, ProductValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    if isinstance(e, EmptyCartError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if isinstance(e, (CheckoutInProgressError, CheckoutStateError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, ProductNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, CatalogUnavailable):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    if isinstance(e, (CatalogError, GatewayError)):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _cart_response(visitor_id: str, storefront: Storefront) -> CartResponse:
    cart = storefront.cart_for(visitor_id)
    items = cart.snapshot()
    return CartResponse(
        visitor_id=visitor_id,
        items=[CartItemResponse.from_item(item) for item in items],
        total_amount=pricing.format_amount(pricing.total(items)),
        item_count=pricing.item_count(items),
        degraded=cart.degraded,
    )


def _checkout_response(visitor_id: str, session: CheckoutSession) -> CheckoutResponse:
    """Pure projection of the session for the checkout page."""
    intent = session.intent
    message = str(session.error) if session.error else None
    if session.state == CheckoutState.CANCELLED:
        message = "Payment was cancelled."
    return CheckoutResponse(
        visitor_id=visitor_id,
        state=session.state.value,
        view=session.view.value,
        can_submit=session.can_submit,
        order_id=intent.order_id if intent else None,
        total_amount=pricing.format_amount(intent.total if intent else pricing.total(session.cart.snapshot())),
        redirect_url=session.ticket.redirect_url if session.ticket else None,
        receipt=session.receipt.model_dump() if session.receipt else None,
        message=message,
        errors=session.error.errors if isinstance(session.error, ValidationError) else None,
    )


def _purchasable(storefront: Storefront, product_id: str) -> ProductRecord:
    product = storefront.catalog.get_product(product_id)
    if product.status != "active":
        raise ProductNotFound(product_id)
    if product.is_opensource:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Free products are downloaded directly")
    return product


def register_routes(app: FastAPI) -> None:
    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        """Health check endpoint."""
        configured = _storefront(request).settings
        return HealthResponse(
            status="ok",
            service="storefront",
            version=SERVICE_VERSION,
            catalog_backend=configured.catalog_backend,
            payment_gateway=configured.payment_gateway,
        )

    @app.get("/categories", response_model=List[CategoryResponse])
    def list_categories() -> List[CategoryResponse]:
        return [
            CategoryResponse(id=category_id, name=entry["name"], subcategories=entry["subcategories"])
            for category_id, entry in CATEGORIES.items()
        ]

    # Filter parameters arrive per request; "all"/"All" mean no filter
    @app.get("/products", response_model=List[ProductRecord])
    def list_products(request: Request, category: Optional[str] = None, subcategory: Optional[str] = None) -> List[ProductRecord]:
        try:
            return _storefront(request).catalog.list_products(ProductFilter(category=category, subcategory=subcategory))
        except StorefrontError as e:
            logger.error(f"Error loading products: {e}")
            raise _http_error(e)

    @app.get("/products/{product_id}", response_model=ProductRecord)
    def get_product(request: Request, product_id: str) -> ProductRecord:
        try:
            product = _storefront(request).catalog.get_product(product_id)
            if product.status != "active":
                raise ProductNotFound(product_id)
            return product
        except StorefrontError as e:
            raise _http_error(e)

    @app.post("/products/{product_id}/download")
    def download_free_product(request: Request, product_id: str) -> dict:
        """Return the download link of an open source product and log the download."""
        storefront = _storefront(request)
        try:
            product = storefront.catalog.get_product(product_id)
        except StorefrontError as e:
            raise _http_error(e)

        if not product.is_opensource or product.status != "active":
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Product is not a free download")

        try:
            storefront.catalog.record_download(product)
        except CatalogError as e:
            # The download itself still goes ahead
            logger.error(f"Error saving download for {product_id}: {e}")

        return {"product_id": product.id, "download_url": product.download_url}

    @app.get("/cart/{visitor_id}", response_model=CartResponse)
    def get_cart(request: Request, visitor_id: str) -> CartResponse:
        """Get visitor's cart."""
        return _cart_response(visitor_id, _storefront(request))

    @app.post("/cart/{visitor_id}/items", status_code=status.HTTP_201_CREATED, response_model=CartResponse)
    def add_item(request: Request, visitor_id: str, item: AddItemRequest) -> CartResponse:
        """Add one unit of a product to the cart."""
        storefront = _storefront(request)
        try:
            product = _purchasable(storefront, item.product_id)
            storefront.cart_for(visitor_id).add(product.id, product.to_unit())
            return _cart_response(visitor_id, storefront)
        except HTTPException:
            raise
        except StorefrontError as e:
            logger.error(f"Error adding item to cart: {e}", extra={"visitor_id": visitor_id})
            raise _http_error(e)

    @app.put("/cart/{visitor_id}/items/{product_id}", response_model=CartResponse)
    def update_item_quantity(request: Request, visitor_id: str, product_id: str, body: UpdateQuantityRequest) -> CartResponse:
        """Update item quantity in cart. If quantity is 0, remove the item."""
        if body.quantity < 0:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Quantity must be >= 0")
        storefront = _storefront(request)
        storefront.cart_for(visitor_id).set_quantity(product_id, body.quantity)
        return _cart_response(visitor_id, storefront)

    @app.delete("/cart/{visitor_id}/items/{product_id}", response_model=CartResponse)
    def remove_item(request: Request, visitor_id: str, product_id: str) -> CartResponse:
        """Remove item from cart. Unknown items are ignored."""
        storefront = _storefront(request)
        storefront.cart_for(visitor_id).remove(product_id)
        return _cart_response(visitor_id, storefront)

    @app.post("/cart/{visitor_id}/buy-now", response_model=CartResponse)
    def buy_now(request: Request, visitor_id: str, item: AddItemRequest) -> CartResponse:
        """Replace the cart with a single product, ready for checkout."""
        storefront = _storefront(request)
        try:
            product = _purchasable(storefront, item.product_id)
            storefront.cart_for(visitor_id).replace_with(product.id, product.to_unit())
            return _cart_response(visitor_id, storefront)
        except HTTPException:
            raise
        except StorefrontError as e:
            raise _http_error(e)

    @app.delete("/cart/{visitor_id}", response_model=CartResponse)
    def clear_cart(request: Request, visitor_id: str) -> CartResponse:
        storefront = _storefront(request)
        storefront.cart_for(visitor_id).clear()
        return _cart_response(visitor_id, storefront)

    @app.get("/checkout/{visitor_id}", response_model=CheckoutResponse)
    def get_checkout(request: Request, visitor_id: str) -> CheckoutResponse:
        return _checkout_response(visitor_id, _storefront(request).session_for(visitor_id))

    @app.post("/checkout/{visitor_id}", response_model=CheckoutResponse)
    def begin_checkout(request: Request, visitor_id: str) -> CheckoutResponse:
        """Enter checkout. An empty cart is rejected and no intent is created."""
        session = _storefront(request).session_for(visitor_id)
        try:
            session.begin()
        except StorefrontError as e:
            raise _http_error(e)
        return _checkout_response(visitor_id, session)

    @app.post("/checkout/{visitor_id}/submit", response_model=CheckoutResponse)
    def submit_checkout(request: Request, visitor_id: str, body: SubmitCheckoutRequest) -> CheckoutResponse:
        """Validate buyer data and open the payment gateway."""
        session = _storefront(request).session_for(visitor_id)
        buyer = None
        if body.name is not None or body.email is not None:
            buyer = BuyerInfo(name=body.name or "", email=body.email or "", phone=body.phone)
        try:
            session.submit(buyer)
        except GatewayError as e:
            # Session is already FAILED; the page shows the retry path
            logger.error(f"Payment initialization error: {e}", extra={"visitor_id": visitor_id})
        except StorefrontError as e:
            raise _http_error(e)
        return _checkout_response(visitor_id, session)

    @app.post("/checkout/{visitor_id}/callback", response_model=CheckoutResponse)
    def gateway_callback(request: Request, visitor_id: str, body: GatewayCallbackRequest) -> CheckoutResponse:
        """Terminal callback from the hosted payment page."""
        session = _storefront(request).session_for(visitor_id)
        if body.outcome == "success":
            session.on_gateway_success(body.payload)
        elif body.outcome == "error":
            session.on_gateway_error(body.payload)
        elif body.outcome == "cancel":
            session.on_gateway_cancel(body.payload)
        else:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown outcome {body.outcome}")

        if isinstance(session.error, PersistenceError):
            logger.critical(str(session.error), extra={"visitor_id": visitor_id})
        return _checkout_response(visitor_id, session)

    @app.post("/checkout/{visitor_id}/retry", response_model=CheckoutResponse)
    def retry_checkout(request: Request, visitor_id: str) -> CheckoutResponse:
        session = _storefront(request).session_for(visitor_id)
        try:
            session.retry()
        except StorefrontError as e:
            raise _http_error(e)
        return _checkout_response(visitor_id, session)

    @app.get("/admin/products", response_model=List[ProductRecord])
    def admin_list_products(request: Request) -> List[ProductRecord]:
        try:
            return _storefront(request).catalog.list_all_products()
        except StorefrontError as e:
            raise _http_error(e)

    @app.post("/admin/products", status_code=status.HTTP_201_CREATED, response_model=ProductRecord)
    def admin_create_product(request: Request, body: ProductInput) -> ProductRecord:
        try:
            return _storefront(request).catalog.create_product(body)
        except StorefrontError as e:
            raise _http_error(e)

    @app.put("/admin/products/{product_id}", response_model=ProductRecord)
    def admin_update_product(request: Request, product_id: str, body: ProductInput) -> ProductRecord:
        try:
            return _storefront(request).catalog.update_product(product_id, body)
        except StorefrontError as e:
            raise _http_error(e)

    @app.delete("/admin/products/{product_id}")
    def admin_delete_product(request: Request, product_id: str) -> dict:
        try:
            _storefront(request).catalog.delete_product(product_id)
        except StorefrontError as e:
            raise _http_error(e)
        return {"message": f"Product {product_id} deleted"}


app = create_app()


# Runs the app with uvicorn on all interfaces and the configured port
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.storefront_port)
